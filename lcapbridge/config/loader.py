"""Configuration loading utilities."""

import json
import re
from pathlib import Path
from typing import Any, Callable

from lcapbridge.config.schema import BridgeConfig


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".lcapbridge" / "config.json"


def get_data_dir() -> Path:
    """Get the lcapbridge data directory (logs, session files)."""
    path = Path.home() / ".lcapbridge"
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_config(config_path: Path | None = None) -> BridgeConfig:
    """Read the camelCase JSON config; defaults when the file does not exist.

    Raises ValueError (pydantic's ValidationError included) naming the file
    when it cannot be used.
    """
    path = config_path or get_config_path()
    if not path.exists():
        return BridgeConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("config root must be a JSON object")
        return BridgeConfig.model_validate(convert_keys(_migrate_config(data)))
    except ValueError as e:
        raise ValueError(
            f"Failed to load config from {path}: {e}. "
            "Fix the file or remove it to regenerate defaults."
        ) from e


def save_config(config: BridgeConfig, config_path: Path | None = None) -> Path:
    """Write ``config`` as camelCase JSON and return the path written."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(convert_to_camel(config.model_dump()), indent=2), encoding="utf-8")
    tmp.replace(path)
    if path == get_config_path():
        from lcapbridge.config.access import clear_config_cache

        clear_config_cache()
    return path


def _migrate_config(data: dict) -> dict:
    """Migrate older flat layouts to the sectioned one.

    Early configs mirrored the client constants directly:
    ``{"platformUrl", "platformOrigin", "trustedOrigin", "roots"}``.
    """
    client = data.setdefault("client", {})
    server = data.setdefault("server", {})
    if isinstance(client, dict):
        if "platformUrl" in data and "platformUrl" not in client:
            client["platformUrl"] = data.pop("platformUrl")
        if "platformOrigin" in data and "targetOrigin" not in client:
            client["targetOrigin"] = data.pop("platformOrigin")
    if isinstance(server, dict):
        if "trustedOrigin" in data and "trustedOrigin" not in server:
            server["trustedOrigin"] = data.pop("trustedOrigin")
        roots = data.pop("roots", None)
        if isinstance(roots, list) and "allowedRoots" not in server:
            server["allowedRoots"] = [str(x) for x in roots]
    return data


_UPPER = re.compile(r"(?<!^)(?=[A-Z])")


def _rekey(data: Any, rename: Callable[[str], str]) -> Any:
    if isinstance(data, dict):
        return {rename(k): _rekey(v, rename) for k, v in data.items()}
    if isinstance(data, list):
        return [_rekey(item, rename) for item in data]
    return data


def convert_keys(data: Any) -> Any:
    """Stored camelCase keys to model field names."""
    return _rekey(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    return _rekey(data, snake_to_camel)


def camel_to_snake(name: str) -> str:
    return _UPPER.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)
