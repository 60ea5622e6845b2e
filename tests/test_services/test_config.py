"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from fnhub.config import Settings


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.secret_key == "change-me-in-production"
        assert s.debug is False
        assert s.port == 8000
        assert s.git_executable == "git"
        assert s.git_clone_timeout_seconds == 120
        assert s.function_file_extension == ".ts"

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        assert test_settings.secret_key == "test-secret-key-with-at-least-32-characters"
        assert test_settings.debug is True
        assert test_settings.git_workspace_dir.name == "workspaces"

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("GIT_WORKSPACE_DIR", str(tmp_path))
        monkeypatch.setenv("GIT_CLONE_TIMEOUT_SECONDS", "30")
        monkeypatch.setenv("FUNCTION_FILE_EXTENSION", ".js")
        s = Settings(_env_file=None)
        assert s.git_workspace_dir == tmp_path
        assert s.git_clone_timeout_seconds == 30
        assert s.function_file_extension == ".js"

    @pytest.mark.parametrize("extension", ["ts", ".", "./ts", ".t s"])
    def test_invalid_extension_rejected(self, extension: str) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, function_file_extension=extension)

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, git_clone_timeout_seconds=0)


class TestRuntimeSecurity:
    def test_debug_skips_checks(self) -> None:
        Settings(_env_file=None, debug=True).validate_runtime_security()

    def test_default_secrets_rejected_in_production(self) -> None:
        with pytest.raises(ValueError, match="SECRET_KEY") as exc_info:
            Settings(_env_file=None).validate_runtime_security()
        assert "ADMIN_PASSWORD" in str(exc_info.value)

    def test_strong_secrets_accepted(self) -> None:
        Settings(
            _env_file=None,
            secret_key="x" * 40,
            admin_password="a-much-stronger-password",
        ).validate_runtime_security()
