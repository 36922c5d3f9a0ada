"""Config loader with schema validation for the ingest server and alerting engine."""

from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml

KEY_SIZE = 32
SECRET_KEY_ENV = "INSIDEOUT_SECRET_KEY"
VALID_EVENT_TYPES = ("online", "offline", "new_entity")
VALID_SINK_KINDS = ("discord", "teams", "generic")
MEMORY_DATABASE_URL = "memory"

# Event names used by older alerting configs.
_LEGACY_EVENT_NAMES = {
    "new_device": "new_entity",
    "new_ping_target": "new_entity",
}


class ConfigError(ValueError):
    """Raised when a configuration file or key file fails validation."""


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    udp_port: int = 4000
    max_message_age_seconds: int = 300
    workers: int = 4
    max_pending: int = 256
    secret_key_path: Path = Path("secret.key")


@dataclass(frozen=True)
class StorageConfig:
    database_url: str = "sqlite:///databases/monitor.sqlite3"

    @property
    def in_memory(self) -> bool:
        return self.database_url == MEMORY_DATABASE_URL


@dataclass(frozen=True)
class AlertBehavior:
    online_threshold_seconds: int = 300
    check_interval_seconds: int = 60
    grace_period_seconds: int = 120
    cooldown_seconds: int = 3600
    batch_delay_seconds: int = 30
    delivery_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class WebhookSink:
    name: str
    url: str
    kind: str = "generic"
    entities: Tuple[str, ...] = ("*",)
    # Per-type filters from the legacy devices/pingTargets keys.
    devices: Tuple[str, ...] = ("*",)
    ping_targets: Tuple[str, ...] = ("*",)
    events: Tuple[str, ...] = ("offline", "online")
    mentions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AlertingConfig:
    enabled: bool = False
    behavior: AlertBehavior = field(default_factory=AlertBehavior)
    webhooks: Tuple[WebhookSink, ...] = ()


@dataclass(frozen=True)
class Config:
    source: Optional[Path]
    config_version: str
    server: ServerConfig
    storage: StorageConfig
    alerting: AlertingConfig


def default_config() -> Config:
    """Configuration used when no file is supplied."""
    return Config(
        source=None,
        config_version="default",
        server=ServerConfig(),
        storage=StorageConfig(),
        alerting=AlertingConfig(),
    )


def load_config(path: str | Path) -> Config:
    """Load and validate a YAML/JSON config file."""
    source = Path(path)
    if not source.exists():
        raise ConfigError(f"Config file not found: {source}")

    data = _deserialize(source)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping")
    return parse_config(data, source)


def load_shared_key(path: str | Path, *, environ: Optional[Mapping[str, str]] = None) -> bytes:
    """Read the base64 pre-shared key, preferring the environment override."""
    env = os.environ if environ is None else environ
    encoded = env.get(SECRET_KEY_ENV, "").strip()
    origin = SECRET_KEY_ENV
    if not encoded:
        key_path = Path(path)
        try:
            encoded = key_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Failed to read secret key {key_path}: {exc}") from exc
        origin = str(key_path)
    return decode_key(encoded, origin=origin)


def decode_key(encoded: str, *, origin: str = "key") -> bytes:
    try:
        key = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigError(f"{origin} is not valid base64") from exc
    if len(key) != KEY_SIZE:
        raise ConfigError(f"{origin} must decode to {KEY_SIZE} bytes, got {len(key)}")
    return key


def _deserialize(source: Path) -> Any:
    text = source.read_text(encoding="utf-8")
    suffix = source.suffix.lower()
    try:
        if suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to parse {source}: {exc}") from exc


def parse_config(data: Dict[str, Any], source: Optional[Path] = None) -> Config:
    config_version = str(data.get("config_version", "1"))

    server_section = _optional_dict(data, "server")
    server = ServerConfig(
        host=str(_lookup(server_section, "host", default="0.0.0.0")),
        udp_port=_coerce_int(_lookup(server_section, "udp_port", "udpPort", default=4000), "server.udp_port", minimum=0),
        max_message_age_seconds=_coerce_int(
            _lookup(server_section, "max_message_age_seconds", "maxMessageAgeSeconds", "maxMessageAge", default=300),
            "server.max_message_age_seconds",
            minimum=1,
        ),
        workers=_coerce_int(_lookup(server_section, "workers", default=4), "server.workers", minimum=1),
        max_pending=_coerce_int(
            _lookup(server_section, "max_pending", "maxPending", default=256), "server.max_pending", minimum=1
        ),
        secret_key_path=Path(str(_lookup(server_section, "secret_key_path", "secretKey", default="secret.key"))),
    )
    if server.udp_port > 65535:
        raise ConfigError("'server.udp_port' must be <= 65535")

    storage_section = _optional_dict(data, "storage")
    database_url = _lookup(storage_section, "database_url", "databaseUrl", default=StorageConfig.database_url)
    if not isinstance(database_url, str) or not database_url.strip():
        raise ConfigError("'storage.database_url' must be a non-empty string")
    storage = StorageConfig(database_url=database_url.strip())

    alerting = _parse_alerting(_optional_dict(data, "alerting"))

    return Config(
        source=source,
        config_version=config_version,
        server=server,
        storage=storage,
        alerting=alerting,
    )


def _parse_alerting(section: Dict[str, Any]) -> AlertingConfig:
    behavior_section = section.get("behavior", section.get("alerting", {}))
    if behavior_section is None:
        behavior_section = {}
    if not isinstance(behavior_section, dict):
        raise ConfigError("alerting.behavior block must be a mapping if provided")

    defaults = AlertBehavior()
    behavior = AlertBehavior(
        online_threshold_seconds=_coerce_int(
            _lookup(behavior_section, "online_threshold_seconds", "onlineThresholdSeconds", default=defaults.online_threshold_seconds),
            "alerting.behavior.online_threshold_seconds",
            minimum=1,
        ),
        check_interval_seconds=_coerce_int(
            _lookup(behavior_section, "check_interval_seconds", "checkIntervalSeconds", default=defaults.check_interval_seconds),
            "alerting.behavior.check_interval_seconds",
            minimum=1,
        ),
        grace_period_seconds=_coerce_int(
            _lookup(behavior_section, "grace_period_seconds", "gracePeriodSeconds", default=defaults.grace_period_seconds),
            "alerting.behavior.grace_period_seconds",
            minimum=0,
        ),
        cooldown_seconds=_coerce_int(
            _lookup(behavior_section, "cooldown_seconds", "cooldownSeconds", default=defaults.cooldown_seconds),
            "alerting.behavior.cooldown_seconds",
            minimum=0,
        ),
        batch_delay_seconds=_coerce_int(
            _lookup(behavior_section, "batch_delay_seconds", "batchDelaySeconds", default=defaults.batch_delay_seconds),
            "alerting.behavior.batch_delay_seconds",
            minimum=0,
        ),
        delivery_timeout_seconds=_coerce_float(
            _lookup(behavior_section, "delivery_timeout_seconds", "deliveryTimeoutSeconds", default=defaults.delivery_timeout_seconds),
            "alerting.behavior.delivery_timeout_seconds",
        ),
    )

    webhooks = tuple(_parse_webhooks(section.get("webhooks", [])))
    return AlertingConfig(
        enabled=bool(section.get("enabled", False)),
        behavior=behavior,
        webhooks=webhooks,
    )


def _parse_webhooks(raw: Any) -> List[WebhookSink]:
    if raw is None:
        return []
    entries: List[Tuple[Optional[str], Any]] = []
    if isinstance(raw, dict):
        # Grouped form: {discord: [...], teams: [...]}
        for kind, items in raw.items():
            if items is None:
                continue
            if not isinstance(items, list):
                raise ConfigError(f"alerting.webhooks.{kind} must be a list")
            entries.extend((str(kind), item) for item in items)
    elif isinstance(raw, list):
        entries.extend((None, item) for item in raw)
    else:
        raise ConfigError("alerting.webhooks must be a list or a mapping of lists")

    sinks: List[WebhookSink] = []
    for index, (group_kind, item) in enumerate(entries):
        if not isinstance(item, dict):
            raise ConfigError(f"alerting.webhooks[{index}] must be a mapping")
        label = f"alerting.webhooks[{index}]"
        url = _require_str(item, "url", label)
        kind = str(item.get("type", item.get("kind", group_kind or "generic"))).lower()
        if kind not in VALID_SINK_KINDS:
            raise ConfigError(f"{label}.type must be one of {', '.join(VALID_SINK_KINDS)}")
        sinks.append(
            WebhookSink(
                name=str(item.get("name") or f"{kind}-{index}"),
                url=url,
                kind=kind,
                entities=_patterns(item, label, "entities"),
                devices=_patterns(item, label, "devices"),
                ping_targets=_patterns(item, label, "pingTargets", "ping_targets"),
                events=_normalize_events(item.get("events"), label),
                mentions=tuple(str(m) for m in _string_list(item.get("mentions", []), f"{label}.mentions")),
            )
        )
    return sinks


def _patterns(item: Dict[str, Any], label: str, *keys: str) -> Tuple[str, ...]:
    """Absent or null means match-all; an explicit empty list matches nothing."""

    raw = _lookup(item, *keys)
    if raw is None:
        return ("*",)
    return tuple(_string_list(raw, f"{label}.{keys[0]}"))


def _normalize_events(raw: Any, label: str) -> Tuple[str, ...]:
    if raw is None:
        return WebhookSink.events
    values = _string_list(raw, f"{label}.events")
    if not values:
        raise ConfigError(f"{label}.events must list at least one event type")
    events: List[str] = []
    for value in values:
        name = _LEGACY_EVENT_NAMES.get(value, value)
        if name not in VALID_EVENT_TYPES:
            raise ConfigError(f"{label}.events contains unknown event '{value}'")
        if name not in events:
            events.append(name)
    return tuple(events)


def _lookup(section: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in section and section[key] is not None:
            return section[key]
    return default


def _optional_dict(obj: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = obj.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} block must be a mapping if provided")
    return value


def _require_str(obj: Dict[str, Any], key: str, label: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{label}.{key}' must be a non-empty string")
    return value.strip()


def _string_list(value: Any, field_name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, Sequence):
        raise ConfigError(f"'{field_name}' must be a list of strings")
    return [str(item) for item in value]


def _coerce_int(value: Any, field_name: str, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'{field_name}' must be an integer, not boolean")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{field_name}' must be an integer") from exc
    if minimum is not None and parsed < minimum:
        raise ConfigError(f"'{field_name}' must be >= {minimum}")
    return parsed


def _coerce_float(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"'{field_name}' must be a number")
    try:
        result = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{field_name}' must be a number") from exc
    if result <= 0:
        raise ConfigError(f"'{field_name}' must be greater than 0")
    return result


__all__ = [
    "AlertBehavior",
    "AlertingConfig",
    "Config",
    "ConfigError",
    "KEY_SIZE",
    "MEMORY_DATABASE_URL",
    "SECRET_KEY_ENV",
    "ServerConfig",
    "StorageConfig",
    "VALID_EVENT_TYPES",
    "VALID_SINK_KINDS",
    "WebhookSink",
    "decode_key",
    "default_config",
    "load_config",
    "load_shared_key",
    "parse_config",
]
