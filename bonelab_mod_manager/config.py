"""Settings and persisted credentials under the XDG config directory."""

import os
from dataclasses import dataclass
from pathlib import Path

from .api import DEFAULT_BASE_URL

APP_NAME = "bonelab-mod-manager"
BONELAB_GAME_ID = 3809
DEFAULT_PLATFORM = "windows"

API_KEY_FILE = "modio_api_key"
MOD_FOLDER_FILE = "modio_folder"
TOKEN_FILE = "modio_access_token"
LEDGER_FILE = "modio_subscribed_mods"


class ConfigurationError(Exception):
    """Raised when required settings are missing or invalid."""

    pass


def xdg_config_home() -> Path:
    value = os.environ.get("XDG_CONFIG_HOME")
    return Path(value) if value else Path.home() / ".config"


def xdg_cache_home() -> Path:
    value = os.environ.get("XDG_CACHE_HOME")
    return Path(value) if value else Path.home() / ".cache"


def _read_value(path: Path) -> str | None:
    """Read a one-line setting file, returning None when absent or blank."""
    try:
        value = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e
    return value or None


@dataclass
class Settings:
    config_dir: Path
    cache_dir: Path
    mod_folder: Path | None = None
    api_key: str | None = None
    email: str | None = None
    game_id: int = BONELAB_GAME_ID
    platform: str = DEFAULT_PLATFORM
    base_url: str = DEFAULT_BASE_URL

    @property
    def token_path(self) -> Path:
        return self.config_dir / TOKEN_FILE

    @property
    def ledger_path(self) -> Path:
        return self.config_dir / LEDGER_FILE

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError(
                "Missing mod.io API key. Pass --api-key, set MODIO_API_KEY "
                f"or write it to {self.config_dir / API_KEY_FILE}."
            )
        return self.api_key

    def require_mod_folder(self) -> Path:
        if self.mod_folder is None:
            raise ConfigurationError(
                "Missing mod folder. Pass --mod-folder, set BONELAB_MOD_FOLDER "
                f"or write it to {self.config_dir / MOD_FOLDER_FILE}."
            )
        if not self.mod_folder.is_dir():
            raise ConfigurationError(f"Mod folder is not a directory: {self.mod_folder}")
        return self.mod_folder

    def load_token(self) -> str | None:
        return _read_value(self.token_path)

    def save_token(self, token: str) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.token_path.write_text(token.strip(), encoding="utf-8")

    def clear_token(self) -> bool:
        """Remove the persisted token. Returns False if there was none."""
        if not self.token_path.exists():
            return False
        self.token_path.unlink()
        return True


def load_settings(
    api_key: str | None = None,
    mod_folder: Path | None = None,
    email: str | None = None,
) -> Settings:
    """
    Resolve settings from explicit values, the environment, then config files.

    Nothing is validated here; use ``require_*`` before the value is needed
    so commands that do not touch the network or the mod folder still work.
    """
    config_dir = xdg_config_home() / APP_NAME
    cache_dir = xdg_cache_home() / APP_NAME

    api_key = api_key or os.environ.get("MODIO_API_KEY") or _read_value(config_dir / API_KEY_FILE)
    folder = (
        str(mod_folder) if mod_folder else None
    ) or os.environ.get("BONELAB_MOD_FOLDER") or _read_value(config_dir / MOD_FOLDER_FILE)
    email = email or os.environ.get("MODIO_EMAIL")

    return Settings(
        config_dir=config_dir,
        cache_dir=cache_dir,
        mod_folder=Path(folder).expanduser() if folder else None,
        api_key=api_key.strip() if api_key else None,
        email=email.strip() if email else None,
        base_url=os.environ.get("MODIO_API_URL", DEFAULT_BASE_URL),
    )
