"""Freshness and shape validation for decrypted payloads, with routing by message kind."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from insideout_monitor.errors import MalformedPayload, MissingFields, Stale
from insideout_monitor.state.types import MessageKind

MAX_MESSAGE_AGE_SECONDS = 300
MAX_NETWORK_INTERFACES = 5


@dataclass(frozen=True)
class RoutedMessage:
    kind: MessageKind
    timestamp: int
    age: int
    name: Optional[str]
    body: Dict[str, Any]
    network_interfaces: List[Dict[str, Any]] = field(default_factory=list)


def route(
    plaintext: bytes,
    now: int,
    *,
    max_age_seconds: int = MAX_MESSAGE_AGE_SECONDS,
) -> RoutedMessage:
    """Validate a decrypted payload and tag it with its message kind.

    Raises ``MalformedPayload``, ``Stale`` or ``MissingFields``; the caller decides
    whether to log or drop.
    """

    message = _parse(plaintext)
    timestamp = _require_timestamp(message)
    age = abs(int(now) - timestamp)
    if age >= max_age_seconds:
        raise Stale(f"message age {age}s outside window (max {max_age_seconds}s)")

    kind = _resolve_kind(message)
    if kind is MessageKind.HEARTBEAT:
        name = _require_name(message, "name")
        interfaces = _bounded_interfaces(message.get("network_interfaces"))
        return RoutedMessage(kind, timestamp, age, name, message, interfaces)
    if kind is MessageKind.PING:
        name = _require_name(message, "name", "monitor_name")
        _require_list(message, "results", kind)
        return RoutedMessage(kind, timestamp, age, name, message)
    if kind is MessageKind.MONITORING:
        _require_list(message, "results", kind)
        name = message.get("name") if isinstance(message.get("name"), str) else None
        return RoutedMessage(kind, timestamp, age, name, message)
    _require_list(message, "clients", kind)
    return RoutedMessage(kind, timestamp, age, None, message)


def _parse(plaintext: bytes) -> Dict[str, Any]:
    try:
        text = plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedPayload("payload is not valid UTF-8") from exc
    try:
        message = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedPayload(f"payload is not valid JSON: {exc.msg}") from exc
    if not isinstance(message, dict):
        raise MalformedPayload("payload root must be a JSON object")
    return message


def _require_timestamp(message: Dict[str, Any]) -> int:
    value = message.get("timestamp")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MissingFields("'timestamp' must be a number of epoch seconds")
    try:
        return int(value)
    except (ValueError, OverflowError) as exc:
        raise MalformedPayload("'timestamp' is not a finite number") from exc


def _resolve_kind(message: Dict[str, Any]) -> MessageKind:
    raw = message.get("type")
    if raw is None:
        return MessageKind.HEARTBEAT
    try:
        return MessageKind(raw)
    except ValueError as exc:
        raise MalformedPayload(f"unsupported message type {raw!r}") from exc


def _require_name(message: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = message.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise MissingFields(f"'{keys[0]}' must be a non-empty string")


def _require_list(message: Dict[str, Any], key: str, kind: MessageKind) -> List[Any]:
    value = message.get(key)
    if not isinstance(value, list):
        raise MissingFields(f"{kind.value} payload requires '{key}' array")
    return value


def _bounded_interfaces(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [iface for iface in value[:MAX_NETWORK_INTERFACES] if isinstance(iface, dict)]


__all__ = ["MAX_MESSAGE_AGE_SECONDS", "MAX_NETWORK_INTERFACES", "RoutedMessage", "route"]
