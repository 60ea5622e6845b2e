"""Git sync engine: full pull, dry-run preview and selective pull.

Every operation runs the same pipeline: look up the user's git config, build
the authenticated clone URL, acquire a workspace, shallow-clone, read the
function files, convert them to the internal dialect, then classify or apply.
The workspace is released on every exit path. Only the two pull variants write
to the function store, and they advance ``last_sync_at`` after the last write.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from fnhub.exceptions import GitNotConfiguredError, GitSyncError, InternalServerError
from fnhub.models.function import CloudFunction
from fnhub.services.code_converter import to_internal_dialect
from fnhub.services.datetime_service import now_utc
from fnhub.services.function_files import (
    function_file_path,
    function_name,
    list_function_files,
    read_function_file,
    resolve_functions_dir,
)
from fnhub.services.git_service import build_auth_url

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from datetime import datetime
    from pathlib import Path

    from fnhub.models.git_config import GitConfig
    from fnhub.services.workspace_service import WorkspaceManager

logger = logging.getLogger(__name__)

WORKSPACE_SYNC = "git-sync"
WORKSPACE_PREVIEW = "git-preview"


class ChangeStatus(StrEnum):
    """Outcome of comparing one remote function with the local store."""

    ADDED = "added"
    MODIFIED = "modified"
    CONFLICT = "conflict"
    UNCHANGED = "unchanged"


@dataclass
class SyncChange:
    """One previewed change. ``local_updated_at`` is only set for conflicts."""

    name: str
    status: ChangeStatus
    local_code: str | None = None
    remote_code: str | None = None
    local_updated_at: datetime | None = None


@dataclass
class SyncPreview:
    """Changes a pull would apply, without ``unchanged`` entries."""

    changes: list[SyncChange] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return any(change.status == ChangeStatus.CONFLICT for change in self.changes)


@dataclass
class PullResult:
    """Names written by a pull. Local functions are never deleted."""

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SyncPolicy:
    """Failure handling that is lenient on purpose.

    ``skip_missing_selected``: a selected name whose file is missing, unreadable
    or not a plain file name is left out of the result instead of failing the
    pull.
    ``cleanup_best_effort``: workspace removal errors are logged and ignored.
    """

    skip_missing_selected: bool = True
    cleanup_best_effort: bool = True


class GitConfigProvider(Protocol):
    async def get(self, user_id: int) -> GitConfig | None: ...


class CredentialVault(Protocol):
    def decrypt(self, ciphertext: str) -> str: ...


class FunctionStore(Protocol):
    async def find_by_user(self, user_id: int) -> list[CloudFunction]: ...

    async def insert(self, record: CloudFunction) -> CloudFunction: ...

    async def update_code(self, function_id: int, code: str) -> None: ...

    async def set_last_sync_at(self, user_id: int, timestamp: datetime) -> None: ...


class RepositoryFetcher(Protocol):
    async def shallow_clone(self, url: str, destination: Path, branch: str) -> None: ...


class UserLockRegistry:
    """One ``asyncio.Lock`` per user, serializing that user's pulls in this process.

    A lock is dropped once its last holder or waiter leaves, so the registry
    only ever holds users with a pull in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._holders: Counter[int] = Counter()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, user_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._holders[user_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if not self._holders[user_id]:
                del self._holders[user_id]
                del self._locks[user_id]


def classify_change(
    local: CloudFunction | None,
    remote_code: str,
    last_sync_at: datetime | None,
) -> ChangeStatus:
    """Classify a remote function against its local record.

    A differing local record is a conflict only when it was edited after the
    last sync; without a watermark nothing is ever a conflict.
    """
    if local is None:
        return ChangeStatus.ADDED
    if local.code == remote_code:
        return ChangeStatus.UNCHANGED
    if last_sync_at is not None and local.updated_at > last_sync_at:
        return ChangeStatus.CONFLICT
    return ChangeStatus.MODIFIED


class GitSyncEngine:
    """Reconciles a user's functions with their configured git repository."""

    def __init__(
        self,
        config_provider: GitConfigProvider,
        vault: CredentialVault,
        store: FunctionStore,
        git: RepositoryFetcher,
        workspaces: WorkspaceManager,
        *,
        extension: str = ".ts",
        policy: SyncPolicy | None = None,
        locks: UserLockRegistry | None = None,
    ) -> None:
        self.config_provider = config_provider
        self.vault = vault
        self.store = store
        self.git = git
        self.workspaces = workspaces
        self.extension = extension
        self.policy = policy or SyncPolicy()
        self.locks = locks or UserLockRegistry()

    async def pull_from_git(self, user_id: int) -> PullResult:
        """Insert or overwrite every remote function; remote always wins."""
        async with self.locks.hold(user_id):
            async with self._checkout(WORKSPACE_SYNC, user_id) as (_config, functions_dir):
                remote = self._read_all(functions_dir)
                result = await self._apply(user_id, remote)
                await self.store.set_last_sync_at(user_id, now_utc())
        logger.info(
            "Pulled from git for user %d: %d added, %d updated",
            user_id,
            len(result.added),
            len(result.updated),
        )
        return result

    async def preview_pull(self, user_id: int) -> SyncPreview:
        """Report what a pull would change, flagging local edits made since the last sync."""
        async with self._checkout(WORKSPACE_PREVIEW, user_id) as (config, functions_dir):
            remote = self._read_all(functions_dir)
            existing = await self._existing_by_name(user_id)

        preview = SyncPreview()
        for name, remote_code in remote.items():
            local = existing.get(name)
            status = classify_change(local, remote_code, config.last_sync_at)
            if status == ChangeStatus.UNCHANGED:
                continue
            change = SyncChange(name=name, status=status, remote_code=remote_code)
            if local is not None:
                change.local_code = local.code
            if status == ChangeStatus.CONFLICT and local is not None:
                change.local_updated_at = local.updated_at
            preview.changes.append(change)
        logger.info(
            "Previewed git pull for user %d: %d changes, conflicts=%s",
            user_id,
            len(preview.changes),
            preview.has_conflicts,
        )
        return preview

    async def selective_pull(self, user_id: int, names: list[str]) -> PullResult:
        """Pull only the named functions.

        Duplicate names are applied once, in first-seen order. Names without a
        readable remote file are skipped under ``skip_missing_selected``.
        """
        requested = list(dict.fromkeys(names))
        async with self.locks.hold(user_id):
            async with self._checkout(WORKSPACE_SYNC, user_id) as (_config, functions_dir):
                remote = self._read_selected(functions_dir, requested)
                result = await self._apply(user_id, remote)
                await self.store.set_last_sync_at(user_id, now_utc())
        logger.info(
            "Selective git pull for user %d: %d requested, %d added, %d updated",
            user_id,
            len(requested),
            len(result.added),
            len(result.updated),
        )
        return result

    async def _load_config(self, user_id: int) -> tuple[GitConfig, str]:
        config = await self.config_provider.get(user_id)
        if config is None:
            raise GitNotConfiguredError()
        token = None
        if config.token:
            try:
                token = self.vault.decrypt(config.token)
            except ValueError as exc:
                raise InternalServerError(
                    f"Failed to decrypt git token for user {user_id}"
                ) from exc
        return config, build_auth_url(config.repo_url, token)

    @asynccontextmanager
    async def _checkout(self, kind: str, user_id: int) -> AsyncIterator[tuple[GitConfig, Path]]:
        """Clone the user's branch into a fresh workspace and yield its functions directory."""
        config, url = await self._load_config(user_id)
        with self.workspaces.workspace(
            kind, user_id, best_effort=self.policy.cleanup_best_effort
        ) as workspace:
            await self.git.shallow_clone(url, workspace, config.branch)
            yield config, resolve_functions_dir(workspace, config.functions_path)

    def _read_all(self, functions_dir: Path) -> dict[str, str]:
        remote: dict[str, str] = {}
        for filename in list_function_files(functions_dir, self.extension):
            raw = read_function_file(functions_dir / filename)
            remote[function_name(filename, self.extension)] = to_internal_dialect(raw)
        return remote

    def _read_selected(self, functions_dir: Path, names: list[str]) -> dict[str, str]:
        remote: dict[str, str] = {}
        for name in names:
            path = function_file_path(functions_dir, name, self.extension)
            try:
                if path is None:
                    raise FileNotFoundError(f"Invalid function name: {name!r}")
                raw = read_function_file(path)
            except (OSError, UnicodeDecodeError) as exc:
                if not self.policy.skip_missing_selected:
                    raise GitSyncError(f"Function file not found in repository: {name}") from exc
                logger.info("Skipping selected function %r: %s", name, exc)
                continue
            remote[name] = to_internal_dialect(raw)
        return remote

    async def _existing_by_name(self, user_id: int) -> dict[str, CloudFunction]:
        return {record.name: record for record in await self.store.find_by_user(user_id)}

    async def _apply(self, user_id: int, remote: dict[str, str]) -> PullResult:
        existing = await self._existing_by_name(user_id)
        result = PullResult()
        for name, code in remote.items():
            local = existing.get(name)
            if local is None:
                now = now_utc()
                await self.store.insert(
                    CloudFunction(
                        user_id=user_id,
                        name=name,
                        code=code,
                        compiled="",
                        path=name,
                        order=0,
                        published=False,
                        created_at=now,
                        updated_at=now,
                    )
                )
                result.added.append(name)
            else:
                await self.store.update_code(local.id, code)
                result.updated.append(name)
        return result
