"""Sync engine tests with in-memory collaborators: failure injection, locking, properties."""

from __future__ import annotations

import asyncio
import string
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from fnhub.exceptions import (
    FunctionsDirectoryNotFoundError,
    GitCloneError,
    GitSyncError,
    InternalServerError,
)
from fnhub.models.function import CloudFunction
from fnhub.models.git_config import GitConfig
from fnhub.services.crypto_service import FernetCredentialVault
from fnhub.services.datetime_service import now_utc
from fnhub.services.git_service import GitService
from fnhub.services.sync_service import GitSyncEngine, SyncPolicy, UserLockRegistry
from fnhub.services.workspace_service import WorkspaceManager
from tests.conftest import TEST_SECRET_KEY, make_fake_git, requires_posix_shell

if TYPE_CHECKING:
    from datetime import datetime

PROPERTY_SETTINGS = settings(
    max_examples=100,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

USER_ID = 7


class FakeConfigProvider:
    def __init__(self, config: GitConfig | None) -> None:
        self.config = config

    async def get(self, user_id: int) -> GitConfig | None:
        if self.config is not None and self.config.user_id == user_id:
            return self.config
        return None


class FakeStore:
    def __init__(self) -> None:
        self.records: dict[int, CloudFunction] = {}
        self.last_sync_at: dict[int, datetime] = {}
        self.fail_on_update: str | None = None
        self._next_id = 1

    async def find_by_user(self, user_id: int) -> list[CloudFunction]:
        return [r for r in self.records.values() if r.user_id == user_id]

    async def insert(self, record: CloudFunction) -> CloudFunction:
        record.id = self._next_id
        self._next_id += 1
        self.records[record.id] = record
        return record

    async def update_code(self, function_id: int, code: str) -> None:
        record = self.records[function_id]
        if record.name == self.fail_on_update:
            raise OSError("store unavailable")
        record.code = code
        record.compiled = ""
        record.updated_at = now_utc()

    async def set_last_sync_at(self, user_id: int, timestamp: datetime) -> None:
        self.last_sync_at[user_id] = timestamp

    def names(self) -> set[str]:
        return {r.name for r in self.records.values()}


class FakeGit:
    """Materializes a fixed file tree instead of cloning."""

    def __init__(self, files: dict[str, str], error: Exception | None = None) -> None:
        self.files = files
        self.error = error
        self.urls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def shallow_clone(self, url: str, destination: Path, branch: str) -> None:
        self.urls.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.01)
            if self.error is not None:
                raise self.error
            for rel_path, content in self.files.items():
                target = destination / rel_path
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
        finally:
            self.active -= 1


def _config(
    token: str | None = None, repo_url: str = "https://git.example.com/acme/fns.git"
) -> GitConfig:
    return GitConfig(
        user_id=USER_ID,
        repo_url=repo_url,
        branch="main",
        functions_path="functions",
        token=token,
        last_sync_at=None,
    )


def _engine(
    root: Path,
    git: FakeGit | GitService,
    store: FakeStore | None = None,
    config: GitConfig | None = None,
    policy: SyncPolicy | None = None,
    workspaces: WorkspaceManager | None = None,
) -> tuple[GitSyncEngine, FakeStore]:
    store = store or FakeStore()
    engine = GitSyncEngine(
        FakeConfigProvider(config if config is not None else _config()),
        FernetCredentialVault(TEST_SECRET_KEY),
        store,
        git,
        workspaces or WorkspaceManager(root),
        policy=policy,
    )
    return engine, store


def _leftovers(root: Path) -> list[Path]:
    return list(root.iterdir()) if root.exists() else []


class TestCredentials:
    async def test_token_is_embedded_in_clone_url(self, tmp_path: Path) -> None:
        vault = FernetCredentialVault(TEST_SECRET_KEY)
        git = FakeGit({"functions/a.ts": "a"})
        engine, _ = _engine(tmp_path, git, config=_config(token=vault.encrypt("ghp_tok")))

        await engine.pull_from_git(USER_ID)

        assert git.urls == ["https://ghp_tok@git.example.com/acme/fns.git"]

    async def test_public_repository_url_unchanged(self, tmp_path: Path) -> None:
        git = FakeGit({"functions/a.ts": "a"})
        engine, _ = _engine(tmp_path, git)

        await engine.preview_pull(USER_ID)

        assert git.urls == ["https://git.example.com/acme/fns.git"]

    async def test_undecryptable_token_is_internal_error(self, tmp_path: Path) -> None:
        git = FakeGit({})
        engine, _ = _engine(tmp_path, git, config=_config(token="not-a-fernet-token"))

        with pytest.raises(InternalServerError):
            await engine.pull_from_git(USER_ID)

        assert git.urls == []
        assert _leftovers(tmp_path) == []


class TestCleanupUnderFailure:
    async def test_clone_failure(self, tmp_path: Path) -> None:
        git = FakeGit({}, error=GitCloneError("Failed to clone repository: denied"))
        engine, store = _engine(tmp_path, git)

        with pytest.raises(GitCloneError):
            await engine.pull_from_git(USER_ID)

        assert _leftovers(tmp_path) == []
        assert store.last_sync_at == {}

    async def test_listing_failure(self, tmp_path: Path) -> None:
        engine, store = _engine(tmp_path, FakeGit({"functions/a.ts": "a"}))

        with (
            patch(
                "fnhub.services.sync_service.list_function_files",
                side_effect=PermissionError("denied"),
            ),
            pytest.raises(PermissionError),
        ):
            await engine.pull_from_git(USER_ID)

        assert _leftovers(tmp_path) == []
        assert store.records == {}

    async def test_read_failure_in_full_pull(self, tmp_path: Path) -> None:
        files = {"functions/a.ts": "a", "functions/b.ts": "b"}
        engine, store = _engine(tmp_path, FakeGit(files))

        with (
            patch(
                "fnhub.services.sync_service.read_function_file",
                side_effect=OSError("disk error"),
            ),
            pytest.raises(OSError, match="disk error"),
        ):
            await engine.pull_from_git(USER_ID)

        assert _leftovers(tmp_path) == []
        assert store.records == {}
        assert store.last_sync_at == {}

    async def test_read_failure_in_preview(self, tmp_path: Path) -> None:
        engine, _ = _engine(tmp_path, FakeGit({"functions/a.ts": "a"}))

        with (
            patch(
                "fnhub.services.sync_service.read_function_file",
                side_effect=OSError("disk error"),
            ),
            pytest.raises(OSError, match="disk error"),
        ):
            await engine.preview_pull(USER_ID)

        assert _leftovers(tmp_path) == []

    async def test_missing_functions_directory_in_preview(self, tmp_path: Path) -> None:
        engine, _ = _engine(tmp_path, FakeGit({"src/a.ts": "a"}))

        with pytest.raises(FunctionsDirectoryNotFoundError, match="functions"):
            await engine.preview_pull(USER_ID)

        assert _leftovers(tmp_path) == []

    async def test_missing_functions_directory_in_selective_pull(self, tmp_path: Path) -> None:
        engine, store = _engine(tmp_path, FakeGit({"src/a.ts": "a"}))

        with pytest.raises(FunctionsDirectoryNotFoundError, match="functions"):
            await engine.selective_pull(USER_ID, ["a"])

        assert _leftovers(tmp_path) == []
        assert store.records == {}
        assert store.last_sync_at == {}

    async def test_read_failure_in_selective_pull_is_skipped(self, tmp_path: Path) -> None:
        engine, store = _engine(tmp_path, FakeGit({"functions/a.ts": "a"}))

        with patch(
            "fnhub.services.sync_service.read_function_file",
            side_effect=OSError("disk error"),
        ):
            result = await engine.selective_pull(USER_ID, ["a"])

        assert result.added == []
        assert USER_ID in store.last_sync_at
        assert _leftovers(tmp_path) == []

    async def test_read_failure_raises_without_skip_policy(self, tmp_path: Path) -> None:
        engine, store = _engine(
            tmp_path,
            FakeGit({"functions/a.ts": "a"}),
            policy=SyncPolicy(skip_missing_selected=False),
        )

        with pytest.raises(GitSyncError, match="not found in repository: b"):
            await engine.selective_pull(USER_ID, ["a", "b"])

        assert store.names() == set()
        assert _leftovers(tmp_path) == []

    async def test_cleanup_failure_does_not_mask_result(self, tmp_path: Path) -> None:
        engine, _ = _engine(tmp_path, FakeGit({"functions/a.ts": "a"}))

        with patch(
            "fnhub.services.workspace_service.shutil.rmtree",
            side_effect=PermissionError("busy"),
        ):
            result = await engine.pull_from_git(USER_ID)

        assert result.added == ["a"]


class TestCleanupPolicy:
    async def test_engines_leave_shared_manager_untouched(self, tmp_path: Path) -> None:
        manager = WorkspaceManager(tmp_path, cleanup_best_effort=False)
        files = {"functions/a.ts": "a"}
        strict, _ = _engine(
            tmp_path,
            FakeGit(files),
            policy=SyncPolicy(cleanup_best_effort=False),
            workspaces=manager,
        )
        lenient, _ = _engine(tmp_path, FakeGit(files), workspaces=manager)

        assert manager.cleanup_best_effort is False
        with patch(
            "fnhub.services.workspace_service.shutil.rmtree",
            side_effect=PermissionError("busy"),
        ):
            result = await lenient.pull_from_git(USER_ID)
            with pytest.raises(PermissionError):
                await strict.pull_from_git(USER_ID)

        assert result.added == ["a"]
        assert manager.cleanup_best_effort is False


@requires_posix_shell
class TestCancellation:
    async def test_cancelled_pull_leaves_no_workspace(self, tmp_path: Path) -> None:
        script = make_fake_git(
            tmp_path,
            'sleep 1\nmkdir -p "$dest/functions"\necho "x" > "$dest/functions/a.ts"',
        )
        root = tmp_path / "ws"
        engine, store = _engine(root, GitService(executable=str(script)))

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(engine.pull_from_git(USER_ID), timeout=0.2)

        await asyncio.sleep(1.5)
        assert _leftovers(root) == []
        assert store.records == {}
        assert len(engine.locks) == 0


class TestPartialFailure:
    async def test_write_failure_keeps_earlier_writes_and_watermark(self, tmp_path: Path) -> None:
        store = FakeStore()
        engine, _ = _engine(
            tmp_path,
            FakeGit({"functions/a.ts": "new a", "functions/b.ts": "new b"}),
            store=store,
        )
        await engine.pull_from_git(USER_ID)
        first_sync = store.last_sync_at[USER_ID]
        engine.git = FakeGit({"functions/a.ts": "newer a", "functions/b.ts": "newer b"})
        store.fail_on_update = "b"

        with pytest.raises(OSError, match="store unavailable"):
            await engine.pull_from_git(USER_ID)

        codes = {r.name: r.code for r in store.records.values()}
        assert codes == {"a": "newer a", "b": "new b"}
        assert store.last_sync_at[USER_ID] == first_sync
        assert _leftovers(tmp_path) == []


class TestPerUserLock:
    async def test_pulls_for_same_user_are_serialized(self, tmp_path: Path) -> None:
        git = FakeGit({"functions/a.ts": "a"})
        engine, _ = _engine(tmp_path, git)

        await asyncio.gather(
            engine.pull_from_git(USER_ID),
            engine.selective_pull(USER_ID, ["a"]),
            engine.pull_from_git(USER_ID),
        )

        assert git.max_active == 1

    async def test_previews_are_not_serialized(self, tmp_path: Path) -> None:
        git = FakeGit({"functions/a.ts": "a"})
        engine, _ = _engine(tmp_path, git)

        await asyncio.gather(engine.preview_pull(USER_ID), engine.preview_pull(USER_ID))

        assert git.max_active == 2

    async def test_locks_are_dropped_when_idle(self, tmp_path: Path) -> None:
        engine, _ = _engine(tmp_path, FakeGit({"functions/a.ts": "a"}))

        await asyncio.gather(engine.pull_from_git(USER_ID), engine.selective_pull(USER_ID, ["a"]))

        assert len(engine.locks) == 0

    async def test_waiter_keeps_lock_alive(self) -> None:
        locks = UserLockRegistry()
        release = asyncio.Event()
        order: list[str] = []

        async def first() -> None:
            async with locks.hold(1):
                order.append("first")
                await release.wait()

        async def second() -> None:
            async with locks.hold(1):
                order.append("second")

        first_task = asyncio.create_task(first())
        await asyncio.sleep(0)
        second_task = asyncio.create_task(second())
        await asyncio.sleep(0)

        assert order == ["first"]
        assert len(locks) == 1
        async with locks.hold(2):
            assert len(locks) == 2

        release.set()
        await asyncio.gather(first_task, second_task)
        assert order == ["first", "second"]
        assert len(locks) == 0


_NAME = st.text(
    alphabet=string.ascii_lowercase + string.digits + "_.", min_size=1, max_size=8
).filter(lambda name: name not in {".", ".."})


class TestSyncProperties:
    @PROPERTY_SETTINGS
    @given(
        remote=st.sets(_NAME, max_size=6),
        requested=st.lists(_NAME | st.sampled_from(["../x", "a/b", ""]), max_size=8),
    )
    def test_selective_pull_result_is_subset_of_request(
        self, remote: set[str], requested: list[str]
    ) -> None:
        files = {f"functions/{name}.ts": f"// {name}\n" for name in remote}
        with tempfile.TemporaryDirectory() as tmp:
            engine, store = _engine(Path(tmp) / "ws", FakeGit(files))
            result = asyncio.run(engine.selective_pull(USER_ID, requested))

        written = [*result.added, *result.updated]
        assert set(written) <= set(requested)
        assert len(written) == len(set(written))
        assert set(written) == set(requested) & remote
        assert store.names() == set(requested) & remote
        assert result.deleted == []

    @PROPERTY_SETTINGS
    @given(remote=st.sets(_NAME, max_size=6))
    def test_function_names_match_file_names(self, remote: set[str]) -> None:
        files = {f"functions/{name}.ts": f"// {name}\n" for name in remote}
        with tempfile.TemporaryDirectory() as tmp:
            engine, store = _engine(Path(tmp) / "ws", FakeGit(files))
            result = asyncio.run(engine.pull_from_git(USER_ID))

        assert sorted(result.added) == sorted(remote)
        assert store.names() == remote
        for record in store.records.values():
            assert record.code == f"// {record.name}\n"
            assert record.path == record.name
