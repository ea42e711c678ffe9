from __future__ import annotations
from pathlib import Path
import fcntl
import os
from typing import Any, Dict, FrozenSet, Tuple
import yaml

from nazuna.util.logger import get_logger

logger = get_logger("app_configuration")


DEFAULT_CONFIG_PATH = "config/app_config.yml"

DEFAULT_FALLBACK_AVATAR = "https://raw.githubusercontent.com/nazuninha/uploads/main/outros/1747053564257_bzswae.bin"


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches contents of ``./config/app_config.yml`` and exposes typed
    properties for every section the runtime reads. Missing keys fall back to
    the defaults the bot has always shipped with, so an empty or absent file
    still produces a working configuration.
    """

    def __init__(self, config_path: Path, data: Dict[str, Any] | None = None) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        if data is None:
            self.reload()
        else:
            self._data = data

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                data = yaml.safe_load(f)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.warning("[APP CONFIGURATION] Config file %s not found, using defaults.", self.config_path)
            return {}
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
            return {}

        if not isinstance(data, dict):
            if data is not None:
                logger.error("[APP CONFIGURATION] Config %s is not a mapping, using defaults.", self.config_path)
            return {}
        return data

    def _section(self, name: str) -> Dict[str, Any]:
        value = self._data.get(name, {})
        return value if isinstance(value, dict) else {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Re-read the YAML file and replace the in-memory cache."""
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # Bot identity
    # --------------------------
    @property
    def prefix(self) -> str:
        return str(self._data.get("prefix") or "!")

    @property
    def bot_name(self) -> str:
        return str(self._data.get("bot_name") or "Nazuna")

    @property
    def owner_name(self) -> str:
        return str(self._data.get("owner_name") or "")

    @property
    def owner_number(self) -> str:
        return str(self._data.get("owner_number") or "")

    @property
    def pairing_code(self) -> str | None:
        """Custom pairing code requested in code mode (``None`` lets the server pick)."""
        value = self._data.get("pairing_code", "N4ZUN4V4")
        return str(value) if value else None

    # --------------------------
    # Paths
    # --------------------------
    @property
    def groups_dir(self) -> Path:
        return Path(self._section("paths").get("groups_dir", "database/grupos"))

    @property
    def auth_dir(self) -> Path:
        """Root directory holding one credential directory per session role."""
        return Path(self._section("paths").get("auth_dir", "database"))

    # --------------------------
    # Caches
    # --------------------------
    @property
    def group_metadata_ttl(self) -> float:
        return float(self._section("cache").get("group_metadata_ttl", 300.0))

    @property
    def message_clear_interval(self) -> float:
        return float(self._section("cache").get("message_clear_interval", 600.0))

    @property
    def retry_counter_ttl(self) -> float:
        return float(self._section("cache").get("retry_counter_ttl", 120.0))

    # --------------------------
    # Timeouts
    # --------------------------
    @property
    def connect_timeout(self) -> float:
        return float(self._section("timeouts").get("connect", 60.0))

    @property
    def action_timeout(self) -> float:
        return float(self._section("timeouts").get("action", 30.0))

    @property
    def qr_timeout(self) -> float:
        return float(self._section("timeouts").get("qr", 180.0))

    @property
    def keep_alive_interval(self) -> float:
        return float(self._section("timeouts").get("keep_alive", 10.0))

    # --------------------------
    # Reconnection
    # --------------------------
    @property
    def reconnect_base_delay(self) -> float:
        return float(self._section("reconnect").get("base_delay", 1.0))

    @property
    def reconnect_max_delay(self) -> float:
        return float(self._section("reconnect").get("max_delay", 60.0))

    @property
    def secondary_first_delay(self) -> float:
        return float(self._section("reconnect").get("secondary_first_delay", 5.0))

    # --------------------------
    # Moderation policy
    # --------------------------
    @property
    def allowed_country_prefixes(self) -> FrozenSet[str]:
        value = self._section("policy").get("allowed_country_prefixes", ["55", "35"])
        if not isinstance(value, (list, tuple, set)):
            return frozenset({"55", "35"})
        return frozenset(str(item) for item in value)

    @property
    def blocked_prefix(self) -> str:
        return str(self._section("policy").get("blocked_prefix", "351"))

    @property
    def fallback_avatar_url(self) -> str:
        return str(self._section("policy").get("fallback_avatar_url") or DEFAULT_FALLBACK_AVATAR)

    @property
    def banner_title(self) -> str:
        return str(self._section("policy").get("banner_title") or "Bem-vindo(a)!")

    @property
    def banner_message(self) -> str:
        return str(self._section("policy").get("banner_message") or "Aceita um cafézinho enquanto lê as regras?")

    # --------------------------
    # Collaborators
    # --------------------------
    @property
    def connector_path(self) -> str | None:
        value = self._section("transport").get("connector")
        return str(value) if value else None

    @property
    def browser(self) -> Tuple[str, str, str]:
        value = self._section("transport").get("browser")
        if isinstance(value, (list, tuple)) and len(value) == 3:
            return (str(value[0]), str(value[1]), str(value[2]))
        return ("Ubuntu", "Edge", "110.0.1587.56")

    @property
    def command_router_path(self) -> str | None:
        value = self._data.get("command_router")
        return str(value) if value else None


def load_app_config(config_path: Path | None = None) -> AppConfig:
    """Build an :class:`AppConfig`, honouring ``NAZUNA_CONFIG`` when no path is given."""
    if config_path is None:
        config_path = Path(os.getenv("NAZUNA_CONFIG", DEFAULT_CONFIG_PATH)).resolve()
    return AppConfig(config_path)
