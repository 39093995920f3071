from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

WORKSPACES_DIR = Path("workspaces")
CURRENT_WORKSPACE_FILE = WORKSPACES_DIR / ".current"
WORKSPACE_FILENAME = "workspace.yaml"
SERVICE_KEY_ENV = "STAFFCRM_SERVICE_KEY"
DEFAULT_USER_NAME = "User"
PROVIDERS = ("sqlite", "rest")


@dataclass(frozen=True)
class BackendConfig:
    provider: str
    sqlite_path: Path | None = None
    url: str | None = None
    timeout: float = 30


@dataclass(frozen=True)
class WorkspaceConfig:
    name: str
    backend: BackendConfig
    user_name: str
    path: Path


class WorkspaceError(RuntimeError):
    pass


def ensure_workspaces_dir() -> None:
    WORKSPACES_DIR.mkdir(parents=True, exist_ok=True)


def set_current_workspace(name: str) -> None:
    ensure_workspaces_dir()
    CURRENT_WORKSPACE_FILE.write_text(f"{name}\n", encoding="utf-8")


def get_current_workspace_name() -> str:
    if not CURRENT_WORKSPACE_FILE.exists():
        raise WorkspaceError("No active workspace. Run `staffcrm workspace use <name>`.")
    return CURRENT_WORKSPACE_FILE.read_text(encoding="utf-8").strip()


def workspace_path(name: str) -> Path:
    return WORKSPACES_DIR / name


def workspace_config_path(name: str) -> Path:
    return workspace_path(name) / WORKSPACE_FILENAME


def load_workspace(name: str | None = None) -> WorkspaceConfig:
    if name is None:
        name = get_current_workspace_name()
    config_path = workspace_config_path(name)
    if not config_path.exists():
        raise WorkspaceError(f"Workspace config not found: {config_path}")
    data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise WorkspaceError("Workspace config must be a mapping.")
    backend = _parse_backend(data.get("backend"), config_path)
    user_name = _parse_user_name(data.get("attribution"))
    return WorkspaceConfig(name=name, backend=backend, user_name=user_name, path=config_path.parent)


def write_workspace_config(
    name: str,
    provider: str = "sqlite",
    url: str | None = None,
    user_name: str | None = None,
) -> Path:
    if provider not in PROVIDERS:
        raise WorkspaceError(f"backend.provider must be one of: {', '.join(PROVIDERS)}")
    if provider == "rest" and not url:
        raise WorkspaceError("A backend url is required for the rest provider.")
    ensure_workspaces_dir()
    ws_dir = workspace_path(name)
    ws_dir.mkdir(parents=True, exist_ok=True)
    backend: dict[str, Any] = {"provider": provider}
    if provider == "sqlite":
        backend["sqlite_path"] = "./local.sqlite"
    else:
        backend["url"] = url
        backend["timeout"] = 30
    config = {
        "workspace": name,
        "backend": backend,
        "attribution": {"user_name": user_name or DEFAULT_USER_NAME},
    }
    config_path = workspace_config_path(name)
    config_path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")
    return config_path


def require_service_key() -> str:
    api_key = os.getenv(SERVICE_KEY_ENV)
    if not api_key:
        raise WorkspaceError(f"{SERVICE_KEY_ENV} is not set.")
    return api_key


def _parse_backend(backend_data: Any, config_path: Path) -> BackendConfig:
    if not isinstance(backend_data, dict):
        raise WorkspaceError("Invalid workspace backend configuration.")
    provider = backend_data.get("provider") or "sqlite"
    if provider not in PROVIDERS:
        raise WorkspaceError(f"backend.provider must be one of: {', '.join(PROVIDERS)}")

    if provider == "sqlite":
        sqlite_path_raw = backend_data.get("sqlite_path")
        if not sqlite_path_raw:
            raise WorkspaceError("Workspace backend.sqlite_path is required.")
        sqlite_path = _resolve_sqlite_path(sqlite_path_raw, config_path)
        if sqlite_path is None:
            raise WorkspaceError("Workspace backend.sqlite_path must be a string.")
        return BackendConfig(provider=provider, sqlite_path=sqlite_path)

    url = backend_data.get("url")
    if not isinstance(url, str) or not url.startswith(("http://", "https://")):
        raise WorkspaceError("Workspace backend.url must be an http(s) URL.")
    timeout = backend_data.get("timeout", 30)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise WorkspaceError("Workspace backend.timeout must be a positive number.")
    return BackendConfig(provider=provider, url=url, timeout=float(timeout))


def _resolve_sqlite_path(sqlite_path_raw: Any, config_path: Path) -> Path | None:
    if not isinstance(sqlite_path_raw, str):
        return None
    raw_path = Path(sqlite_path_raw)
    if raw_path.is_absolute():
        return raw_path
    workspace_dir = config_path.parent
    if raw_path.parts and raw_path.parts[0] == WORKSPACES_DIR.name:
        # Paths written from the repo root, e.g. "workspaces/demo/local.sqlite".
        return (workspace_dir.parent.parent / raw_path).resolve()
    return (workspace_dir / raw_path).resolve()


def _parse_user_name(attribution: Any) -> str:
    if attribution is None:
        return DEFAULT_USER_NAME
    if not isinstance(attribution, dict):
        raise WorkspaceError("Workspace attribution must be a mapping.")
    user_name = attribution.get("user_name")
    if user_name is None:
        return DEFAULT_USER_NAME
    if not isinstance(user_name, str) or not user_name.strip():
        raise WorkspaceError("Workspace attribution.user_name must be a non-empty string.")
    return user_name.strip()
