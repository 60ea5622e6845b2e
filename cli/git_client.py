"""CLI client for FnHub git sync."""

from __future__ import annotations

import argparse
import getpass
import json
import sys
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

CONFIG_FILE = Path.home() / ".fnhub-git.json"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


class GitClient:
    """Client for the FnHub git sync API."""

    def __init__(
        self,
        server_url: str,
        token: str | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = httpx.Client(
            base_url=self.server_url,
            headers=headers,
            timeout=180.0,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> GitClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = self.client.request(method, path, **kwargs)
        resp.raise_for_status()
        return resp.json()

    def login(self, username: str, password: str) -> str:
        """Login and return access token."""
        data = self._request(
            "POST", "/api/auth/login", json={"username": username, "password": password}
        )
        result: str = data["access_token"]
        return result

    def get_config(self) -> dict[str, Any]:
        result: dict[str, Any] = self._request("GET", "/api/git/config")
        return result

    def set_config(
        self,
        repo_url: str,
        branch: str,
        functions_path: str,
        token: str | None = None,
        clear_token: bool = False,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "repo_url": repo_url,
            "branch": branch,
            "functions_path": functions_path,
            "clear_token": clear_token,
        }
        if token:
            body["token"] = token
        result: dict[str, Any] = self._request("PUT", "/api/git/config", json=body)
        return result

    def status(self) -> dict[str, Any]:
        result: dict[str, Any] = self._request("GET", "/api/git/status")
        return result

    def preview(self) -> dict[str, Any]:
        """Show what a pull would change without applying it."""
        result: dict[str, Any] = self._request("GET", "/api/git/preview-pull")
        return result

    def pull(self, functions: list[str] | None = None) -> dict[str, Any]:
        """Pull all functions, or only the named ones."""
        body = {"functions": functions} if functions else {}
        result: dict[str, Any] = self._request("POST", "/api/git/pull", json=body)
        return result


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def load_config(config_path: Path) -> dict[str, str]:
    """Load client config from file."""
    if not config_path.exists():
        return {}
    config: dict[str, str] = json.loads(config_path.read_text())
    return config


def save_config(config_path: Path, config: dict[str, str]) -> None:
    """Save client config to file, readable by the owner only."""
    config_path.write_text(json.dumps(config, indent=2))
    config_path.chmod(0o600)


def format_preview(preview: dict[str, Any]) -> list[str]:
    """Render a pull preview as printable lines."""
    changes = preview.get("changes", [])
    if not changes:
        return ["Up to date: nothing to pull."]
    markers = {"added": "+", "modified": "~", "conflict": "!"}
    lines = [f"{len(changes)} change(s):"]
    for change in changes:
        marker = markers.get(change["status"], "?")
        lines.append(f"  {marker} {change['name']} ({change['status']})")
    if preview.get("has_conflicts"):
        lines.append("Conflicts: local edits since the last sync would be overwritten.")
    return lines


def format_pull_result(result: dict[str, Any]) -> list[str]:
    """Render a pull result as printable lines."""
    lines = [
        f"Added:   {len(result.get('added', []))}",
        f"Updated: {len(result.get('updated', []))}",
    ]
    lines.extend(f"  + {name}" for name in result.get("added", []))
    lines.extend(f"  ~ {name}" for name in result.get("updated", []))
    return lines


def _error_detail(exc: httpx.HTTPStatusError) -> str:
    try:
        detail = exc.response.json().get("detail")
    except ValueError:
        detail = None
    return str(detail) if detail else f"HTTP {exc.response.status_code}"


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="fnhub-git",
        description="Manage git sync of your FnHub functions",
    )
    parser.add_argument("--server", "-s", help="Server URL")
    parser.add_argument(
        "--config-file",
        type=Path,
        default=CONFIG_FILE,
        help=f"Client config file (default: {CONFIG_FILE})",
    )
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )

    subparsers = parser.add_subparsers(dest="command")
    login_parser = subparsers.add_parser("login", help="Log in and store an access token")
    login_parser.add_argument("--username", "-u", help="Username")
    subparsers.add_parser("status", help="Show git sync status")
    config_parser = subparsers.add_parser("config", help="Show or update the git configuration")
    config_parser.add_argument("--repo-url", help="Repository URL")
    config_parser.add_argument("--branch", default="main", help="Branch (default: main)")
    config_parser.add_argument(
        "--path", default="functions", help="Functions directory (default: functions)"
    )
    config_parser.add_argument(
        "--ask-token", action="store_true", help="Prompt for an access token"
    )
    config_parser.add_argument(
        "--clear-token", action="store_true", help="Remove the stored access token"
    )
    subparsers.add_parser("preview", help="Show what a pull would change")
    pull_parser = subparsers.add_parser("pull", help="Pull functions from git")
    pull_parser.add_argument(
        "--function",
        "-f",
        dest="functions",
        action="append",
        default=[],
        metavar="NAME",
        help="Pull only this function (repeatable)",
    )

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    config = load_config(args.config_file)
    configured_server_url = args.server or config.get("server")
    if not configured_server_url:
        print("Error: No server configured. Run 'fnhub-git --server <url> login' first.")
        sys.exit(1)
    try:
        server_url = validate_server_url(configured_server_url, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    if args.command == "login":
        username = args.username or config.get("username") or input("Username: ")
        password = getpass.getpass("Password: ")
        with GitClient(server_url) as client:
            try:
                token = client.login(username, password)
            except httpx.HTTPStatusError as exc:
                print(f"Error: Login failed ({_error_detail(exc)})")
                sys.exit(1)
        save_config(
            args.config_file, {"server": server_url, "username": username, "token": token}
        )
        print(f"Logged in as {username}")
        return

    token = config.get("token")
    if not token:
        print("Error: Not logged in. Run 'fnhub-git login' first.")
        sys.exit(1)

    with GitClient(server_url, token) as client:
        try:
            if args.command == "status":
                status = client.status()
                if not status["configured"]:
                    print("Git sync is not configured.")
                else:
                    print(f"Last sync: {status.get('last_sync_at') or 'never'}")
            elif args.command == "config":
                if args.repo_url:
                    repo_token = getpass.getpass("Access token: ") if args.ask_token else None
                    git_config = client.set_config(
                        args.repo_url,
                        args.branch,
                        args.path,
                        token=repo_token,
                        clear_token=args.clear_token,
                    )
                else:
                    git_config = client.get_config()
                print(json.dumps(git_config, indent=2))
            elif args.command == "preview":
                for line in format_preview(client.preview()):
                    print(line)
            elif args.command == "pull":
                for line in format_pull_result(client.pull(args.functions or None)):
                    print(line)
        except httpx.HTTPStatusError as exc:
            print(f"Error: {_error_detail(exc)}")
            sys.exit(1)


if __name__ == "__main__":
    main()
