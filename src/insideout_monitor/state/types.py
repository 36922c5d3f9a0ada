"""Shared dataclasses and enums used across ingest, status tracking, and alerting."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class EntityStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class EntityType(str, Enum):
    DEVICE = "device"
    PING_TARGET = "ping_target"
    MONITOR_CHECK = "monitor_check"
    UNIFI_CLIENT = "unifi_client"


class MessageKind(str, Enum):
    HEARTBEAT = "heartbeat"
    PING = "ping"
    MONITORING = "monitoring"
    UNIFI = "unifi"


class AlertEventType(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    NEW_ENTITY = "new_entity"

    @classmethod
    def for_status(cls, status: EntityStatus) -> "AlertEventType":
        return cls.ONLINE if status is EntityStatus.ONLINE else cls.OFFLINE


@dataclass(frozen=True)
class Sample:
    entity_type: EntityType
    entity_key: str
    kind: MessageKind
    device_timestamp: int
    received_at: int
    payload: Dict[str, Any] = field(default_factory=dict)
    reported_status: Optional[EntityStatus] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def last_seen(self) -> int:
        return self.received_at


@dataclass(frozen=True)
class EntityState:
    entity_key: str
    entity_type: EntityType
    status: EntityStatus
    last_seen: int
    last_status_change: int
    reported_status: Optional[EntityStatus] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SightingResult:
    state: EntityState
    created: bool
    advanced: bool
    # Sample belonged to another entity type than the stored record.
    type_conflict: bool = False


@dataclass(frozen=True)
class TransitionEvent:
    entity_key: str
    entity_type: EntityType
    previous: EntityStatus
    current: EntityStatus
    occurred_at: int
    last_seen: int


@dataclass(frozen=True)
class AlertEvent:
    entity_type: EntityType
    entity_key: str
    event_type: AlertEventType
    occurred_at: int
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    sink_name: str
    sink_kind: str = "generic"
    error: Optional[str] = None


__all__ = [
    "AlertEvent",
    "AlertEventType",
    "DeliveryResult",
    "EntityState",
    "EntityStatus",
    "EntityType",
    "MessageKind",
    "Sample",
    "SightingResult",
    "TransitionEvent",
]
