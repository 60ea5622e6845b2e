"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (credential decryption failures, config validation, etc.). The global
  handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``GitSyncError``: for git synchronization failures whose message is safe to
  show to the user (missing configuration, missing functions directory,
  failed clone with credentials already redacted). Returned as the response
  detail with 400, or 502 for ``GitCloneError``.
- ``ValueError``: for *business logic* validation errors that are safe to
  forward to clients. The global ``ValueError`` handler returns ``str(exc)``
  as the 422 detail.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``fnhub/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class GitSyncError(Exception):
    """Base class for user-facing git synchronization failures (HTTP 400)."""


class GitNotConfiguredError(GitSyncError):
    """The user has no git configuration; raised before any I/O happens."""

    def __init__(self) -> None:
        super().__init__("Git repository is not configured")


class FunctionsDirectoryNotFoundError(GitSyncError):
    """The configured functions directory does not exist in the cloned tree."""

    def __init__(self, functions_path: str) -> None:
        self.functions_path = functions_path
        super().__init__(f"Functions directory not found: {functions_path or '.'}")


class GitCloneError(GitSyncError):
    """Cloning the repository failed (auth, network, missing branch or repo, timeout).

    The message never contains the access token.
    """
