"""Ephemeral per-invocation workspaces for git checkouts."""

from __future__ import annotations

import logging
import shutil
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)

_MAX_NAME_ATTEMPTS = 100


class WorkspaceManager:
    """Allocates ``{kind}-{user_id}-{timestamp}`` directories under a root.

    The timestamp is in milliseconds. When two calls land on the same one, the
    later call takes the next free value, so a directory is never shared.
    """

    def __init__(self, root: Path, *, cleanup_best_effort: bool = True) -> None:
        self.root = root
        self.cleanup_best_effort = cleanup_best_effort

    def acquire(self, kind: str, user_id: int) -> Path:
        """Create and return a fresh, empty workspace directory."""
        self.root.mkdir(parents=True, exist_ok=True)
        stamp = time.time_ns() // 1_000_000
        for offset in range(_MAX_NAME_ATTEMPTS):
            path = self.root / f"{kind}-{user_id}-{stamp + offset}"
            try:
                path.mkdir()
            except FileExistsError:
                continue
            break
        else:
            raise FileExistsError(f"No free workspace name for {kind}-{user_id} under {self.root}")
        logger.debug("Acquired workspace %s", path)
        return path

    def release(self, path: Path, *, best_effort: bool | None = None) -> None:
        """Remove a workspace tree; a missing or half-removed tree is fine.

        In best-effort mode removal errors are logged and swallowed so they never
        mask the outcome of the sync. ``best_effort`` picks the mode for this call;
        ``None`` falls back to the manager's ``cleanup_best_effort``.
        """
        if best_effort is None:
            best_effort = self.cleanup_best_effort
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            if not best_effort:
                raise
            logger.warning("Failed to remove workspace %s: %s", path, exc)
            return
        logger.debug("Released workspace %s", path)

    @contextmanager
    def workspace(
        self, kind: str, user_id: int, *, best_effort: bool | None = None
    ) -> Iterator[Path]:
        """Yield a workspace that is released on every exit path."""
        path = self.acquire(kind, user_id)
        try:
            yield path
        finally:
            self.release(path, best_effort=best_effort)
