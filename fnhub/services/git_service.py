"""Git service: shallow clones of user repositories via the git CLI."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import signal
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from fnhub.exceptions import GitCloneError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_GIT_TIMEOUT_SECONDS = 120

_URL_USERINFO_RE = re.compile(r"(?P<scheme>[A-Za-z][A-Za-z0-9+.-]*://)[^@/\s]+@")

_REDACTED = "***"


def build_auth_url(repo_url: str, token: str | None) -> str:
    """Embed an access token into an http(s) repository URL.

    Any userinfo already present is replaced. URLs without a token, and URL
    shapes that cannot carry one (ssh, scp-like, file, malformed), are
    returned unchanged; problems with them surface when cloning.
    """
    if not token:
        return repo_url
    parts = urlsplit(repo_url)
    if parts.scheme not in {"http", "https"} or not parts.hostname:
        return repo_url
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    netloc = f"{quote(token, safe='')}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def redact_credentials(text: str, secret: str | None = None) -> str:
    """Remove a secret and any URL userinfo from text bound for logs or users."""
    if secret:
        text = text.replace(secret, _REDACTED).replace(quote(secret, safe=""), _REDACTED)
    return _URL_USERINFO_RE.sub(rf"\g<scheme>{_REDACTED}@", text)


class GitService:
    """Wraps the git CLI for non-interactive repository access.

    Git runs as an asyncio subprocess in its own process group. On timeout or
    cancellation the group is killed and reaped before the error propagates,
    so nothing writes into the destination once the caller has moved on.
    """

    def __init__(
        self,
        executable: str = "git",
        timeout_seconds: float = _GIT_TIMEOUT_SECONDS,
    ) -> None:
        self.executable = executable
        self.timeout_seconds = timeout_seconds

    async def _run(self, *args: str) -> tuple[int, str]:
        """Run a git command without ever prompting for credentials.

        Returns the exit status and stderr.
        """
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_ASKPASS", "true")
        proc = await asyncio.create_subprocess_exec(
            self.executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            start_new_session=True,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except (TimeoutError, asyncio.CancelledError):
            await _kill_process_group(proc)
            raise
        return await proc.wait(), stderr.decode(errors="replace")

    async def _clone(self, url: str, destination: Path, branch: str) -> None:
        username = urlsplit(url).username
        secret = unquote(username) if username else None
        try:
            returncode, stderr = await self._run(
                "clone",
                "--depth",
                "1",
                "--single-branch",
                "--branch",
                branch,
                "--",
                url,
                str(destination),
            )
        except TimeoutError:
            logger.error("Git clone timed out after %gs", self.timeout_seconds)
            msg = f"Cloning the repository timed out after {self.timeout_seconds:g} seconds"
            raise GitCloneError(msg) from None
        except FileNotFoundError as exc:
            logger.error("Git executable %r not found", self.executable)
            raise GitCloneError("Git is not installed on the server") from exc

        if returncode != 0:
            stderr = redact_credentials(stderr.strip(), secret)
            logger.error("Git clone failed (exit %d): %s", returncode, stderr or "no stderr")
            detail = stderr.splitlines()[-1] if stderr else f"git exited with {returncode}"
            raise GitCloneError(f"Failed to clone repository: {detail}")

    async def shallow_clone(self, url: str, destination: Path, branch: str) -> None:
        """Clone a single branch at depth 1 into destination.

        Raises GitCloneError on authentication or network failure, a missing
        branch or repository, or timeout. The error never contains the token.
        If the calling task is cancelled, git is stopped before the
        cancellation propagates.
        """
        logger.info(
            "Cloning %s (branch %s) into %s",
            redact_credentials(url),
            branch,
            destination,
        )
        await self._clone(url, destination, branch)


async def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            os.killpg(proc.pid, signal.SIGKILL)
    await proc.wait()
    logger.warning("Stopped git process %d before it finished", proc.pid)
