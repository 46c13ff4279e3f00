from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .engine import EngineOptions
from .i18n import DEFAULT_LANGUAGE, available_languages


class ConfigError(RuntimeError):
    """Raised when the configuration file is invalid."""


DEFAULT_LOG_FILE = Path("logs") / "log.txt"
STORAGE_BACKENDS = ("json", "sqlite")
DEFAULT_STORAGE_PATHS = {
    "json": Path("data") / "giveaways.json",
    "sqlite": Path("data") / "giveaways.sqlite",
}


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    logger_channel_id: Optional[int] = None
    file: Optional[Path] = DEFAULT_LOG_FILE


@dataclass(slots=True)
class GiveawayConfig:
    reaction: str
    bots_can_win: bool = False
    language: str = DEFAULT_LANGUAGE
    custom_check_timeout: float = 10.0
    rejection_notice_ttl: float = 10.0
    finalize_retry_delay: float = 30.0

    def engine_options(self) -> EngineOptions:
        return EngineOptions(
            reaction=self.reaction,
            bots_can_win=self.bots_can_win,
            language=self.language,
            custom_check_timeout=self.custom_check_timeout,
            rejection_notice_ttl=self.rejection_notice_ttl,
            finalize_retry_delay=self.finalize_retry_delay,
        )


@dataclass(slots=True)
class StorageConfig:
    backend: str = "json"
    path: Path = field(default_factory=lambda: DEFAULT_STORAGE_PATHS["json"])


@dataclass(slots=True)
class PermissionsConfig:
    admin_roles: List[int] = field(default_factory=list)
    development_guild_id: Optional[int] = None


@dataclass(slots=True)
class Config:
    token: str
    application_id: int
    logging: LoggingConfig
    giveaways: GiveawayConfig
    storage: StorageConfig
    permissions: PermissionsConfig


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ConfigError(f"Missing required config key: {key}")
    return data[key]


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"{key} must be a mapping.")
    return section


def _resolve_env_value(value: str, key: str) -> str:
    """Expand a ``${NAME}`` reference to the value of that environment variable."""
    trimmed = value.strip()
    if not (trimmed.startswith("${") and trimmed.endswith("}")):
        return value
    env_name = trimmed[2:-1].strip()
    if not env_name:
        raise ConfigError(f"Environment reference for '{key}' is empty.")
    if env_name not in os.environ:
        raise ConfigError(
            f"Environment variable '{env_name}' referenced by '{key}' is not set."
        )
    return os.environ[env_name]


def _optional_id(value: Any, key: str) -> Optional[int]:
    # Snowflakes may be written as numbers or strings; blanks mean unset.
    if value in (None, "", 0):
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a Discord id.")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be a Discord id; got {value!r}.") from exc
    if parsed <= 0:
        raise ConfigError(f"{key} must be a positive Discord id.")
    return parsed


def _positive_seconds(data: Dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"giveaways.{key} must be a positive number of seconds.")
    return float(value)


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f"logging.level {level!r} is not a logging level name.")
    file_raw = data.get("file", DEFAULT_LOG_FILE)
    return LoggingConfig(
        level=level,
        logger_channel_id=_optional_id(
            data.get("logger_channel_id"), "logging.logger_channel_id"
        ),
        file=Path(str(file_raw)) if file_raw else None,
    )


def _parse_giveaways(data: Dict[str, Any]) -> GiveawayConfig:
    reaction = str(_require(data, "reaction")).strip()
    if not reaction:
        raise ConfigError("giveaways.reaction must not be empty.")

    bots_can_win = data.get("bots_can_win", False)
    if not isinstance(bots_can_win, bool):
        raise ConfigError("giveaways.bots_can_win must be true or false.")

    language = str(data.get("language", DEFAULT_LANGUAGE))
    supported = available_languages()
    if language not in supported:
        raise ConfigError(
            f"giveaways.language must be one of {', '.join(supported)}; got {language!r}."
        )

    return GiveawayConfig(
        reaction=reaction,
        bots_can_win=bots_can_win,
        language=language,
        custom_check_timeout=_positive_seconds(data, "custom_check_timeout", 10.0),
        rejection_notice_ttl=_positive_seconds(data, "rejection_notice_ttl", 10.0),
        finalize_retry_delay=_positive_seconds(data, "finalize_retry_delay", 30.0),
    )


def _parse_storage(data: Dict[str, Any]) -> StorageConfig:
    backend = str(data.get("backend", "json")).lower()
    if backend not in STORAGE_BACKENDS:
        raise ConfigError(
            f"storage.backend must be one of {', '.join(STORAGE_BACKENDS)}; got {backend!r}."
        )
    path_raw = data.get("path")
    path = Path(str(path_raw)) if path_raw else DEFAULT_STORAGE_PATHS[backend]
    return StorageConfig(backend=backend, path=path)


def _parse_permissions(data: Dict[str, Any]) -> PermissionsConfig:
    roles_raw = data.get("admin_roles") or []
    if not isinstance(roles_raw, list):
        raise ConfigError("permissions.admin_roles must be a list of role ids.")
    admin_roles: List[int] = []
    for index, role_raw in enumerate(roles_raw):
        key = f"permissions.admin_roles[{index}]"
        role_id = _optional_id(role_raw, key)
        if role_id is None:
            raise ConfigError(f"{key} must not be empty.")
        admin_roles.append(role_id)
    return PermissionsConfig(
        admin_roles=admin_roles,
        development_guild_id=_optional_id(
            data.get("development_guild_id"), "permissions.development_guild_id"
        ),
    )


def load_config(path: Path) -> Config:
    if not path.is_file():
        raise ConfigError(f"Config file {path} does not exist.")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping at the root.")

    token = _resolve_env_value(str(_require(data, "token")), "token").strip()
    if not token:
        raise ConfigError("token must not be empty.")
    application_id = _optional_id(_require(data, "application_id"), "application_id")
    if application_id is None:
        raise ConfigError("application_id must not be empty.")

    giveaways = _require(data, "giveaways")
    if not isinstance(giveaways, dict):
        raise ConfigError("giveaways must be a mapping.")

    return Config(
        token=token,
        application_id=application_id,
        logging=_parse_logging(_section(data, "logging")),
        giveaways=_parse_giveaways(giveaways),
        storage=_parse_storage(_section(data, "storage")),
        permissions=_parse_permissions(_section(data, "permissions")),
    )
