"""Shared test fixtures for FnHub."""

from __future__ import annotations

import shlex
import shutil
import subprocess
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fnhub.config import Settings
from fnhub.main import create_app
from fnhub.models.base import Base
from fnhub.services.crypto_service import FernetCredentialVault

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
requires_posix_shell = pytest.mark.skipif(sys.platform == "win32", reason="needs /bin/sh")


def _git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        [
            "git",
            "-c",
            "user.name=FnHub Tests",
            "-c",
            "user.email=tests@fnhub.invalid",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


def make_git_repo(path: Path, files: dict[str, str], branch: str = "main") -> Path:
    """Create a git repository at ``path`` with one commit holding ``files``.

    Keys are paths relative to the repository root.
    """
    path.mkdir(parents=True, exist_ok=True)
    _git(path, "init", "-q")
    _git(path, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
    commit_files(path, files, "initial commit")
    return path


def commit_files(repo: Path, files: dict[str, str], message: str) -> None:
    """Write files into a repository and commit them."""
    for rel_path, content in files.items():
        target = repo / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    _git(repo, "add", "-A")
    _git(repo, "commit", "-q", "--allow-empty", "-m", message)


def git_output(repo: Path, *args: str) -> str:
    """Run a git command in ``repo`` and return its stdout."""
    return _git(repo, *args)


@asynccontextmanager
async def create_test_client(settings: Settings) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB schema, admin
    user, workspace root) because ASGITransport does not trigger it.
    """
    from fnhub.database import create_engine as create_db_engine
    from fnhub.services.auth_service import ensure_admin_user

    app = create_app(settings)
    settings.validate_runtime_security()
    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as session:
        await ensure_admin_user(session, settings)
    settings.git_workspace_dir.mkdir(parents=True, exist_ok=True)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    return Settings(
        _env_file=None,
        secret_key=TEST_SECRET_KEY,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        git_workspace_dir=tmp_path / "workspaces",
        admin_username="admin",
        admin_password="admin123",
    )


@pytest.fixture
def vault() -> FernetCredentialVault:
    """Credential vault keyed by the test secret."""
    return FernetCredentialVault(TEST_SECRET_KEY)


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with all tables."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(
    db_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


def make_fake_git(directory: Path, body: str) -> Path:
    """Write an executable ``/bin/sh`` script that stands in for git.

    ``$dest`` holds the last argument, which is the clone destination.
    """
    script = directory / "fake-git"
    script.write_text(f"#!/bin/sh\nfor dest; do :; done\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    return script


def sh_quote(path: Path) -> str:
    """Quote a path for use inside a fake git script."""
    return shlex.quote(str(path))
