"""Turn routed messages into per-entity samples."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from insideout_monitor.errors import MissingFields
from insideout_monitor.ingest.validator import RoutedMessage
from insideout_monitor.state.types import EntityStatus, EntityType, MessageKind, Sample

LOGGER = logging.getLogger(__name__)


def samples_from_message(message: RoutedMessage, received_at: int) -> List[Sample]:
    if message.kind is MessageKind.HEARTBEAT:
        return [_heartbeat_sample(message, received_at)]
    if message.kind is MessageKind.PING:
        return _ping_samples(message, received_at)
    if message.kind is MessageKind.MONITORING:
        return _monitoring_samples(message, received_at)
    return _unifi_samples(message, received_at)


def _heartbeat_sample(message: RoutedMessage, received_at: int) -> Sample:
    if not message.name:
        raise MissingFields("heartbeat payload requires 'name'")
    return Sample(
        entity_type=EntityType.DEVICE,
        entity_key=message.name,
        kind=message.kind,
        device_timestamp=message.timestamp,
        received_at=received_at,
        payload={"network_interfaces": message.network_interfaces},
        metadata={"display_name": message.name, "interface_count": len(message.network_interfaces)},
    )


def _ping_samples(message: RoutedMessage, received_at: int) -> List[Sample]:
    samples: List[Sample] = []
    for result in message.body.get("results", []):
        if not isinstance(result, dict):
            continue
        ip = result.get("ip")
        if not isinstance(ip, str) or not ip.strip():
            LOGGER.debug("Skipping ping result without ip from %s", message.name)
            continue
        ip = ip.strip()
        samples.append(
            Sample(
                entity_type=EntityType.PING_TARGET,
                entity_key=ip,
                kind=message.kind,
                device_timestamp=message.timestamp,
                received_at=received_at,
                payload=dict(result),
                reported_status=_reported_status(result.get("status")),
                metadata={
                    "display_name": result.get("name") or ip,
                    "monitor_name": message.name,
                    "response_time_ms": result.get("response_time_ms"),
                },
            )
        )
    return samples


def _monitoring_samples(message: RoutedMessage, received_at: int) -> List[Sample]:
    samples: List[Sample] = []
    for result in message.body.get("results", []):
        if not isinstance(result, dict):
            continue
        key = result.get("url") or result.get("path")
        if not isinstance(key, str) or not key.strip():
            LOGGER.debug("Skipping monitoring result without url/path from %s", message.name)
            continue
        samples.append(
            Sample(
                entity_type=EntityType.MONITOR_CHECK,
                entity_key=key.strip(),
                kind=message.kind,
                device_timestamp=message.timestamp,
                received_at=received_at,
                payload=dict(result),
                reported_status=_reported_status(result.get("status")),
                metadata={
                    "display_name": result.get("name") or key,
                    "monitor_name": message.name,
                    "check_type": result.get("type"),
                    "response_time_ms": result.get("response_time_ms"),
                },
            )
        )
    return samples


def _unifi_samples(message: RoutedMessage, received_at: int) -> List[Sample]:
    samples: List[Sample] = []
    for client in message.body.get("clients", []):
        if not isinstance(client, dict):
            continue
        mac = client.get("mac")
        if not isinstance(mac, str) or not mac.strip():
            continue
        samples.append(
            Sample(
                entity_type=EntityType.UNIFI_CLIENT,
                entity_key=mac.strip().lower(),
                kind=message.kind,
                device_timestamp=message.timestamp,
                received_at=received_at,
                payload=dict(client),
                metadata=_unifi_metadata(client),
            )
        )
    return samples


def _unifi_metadata(client: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "display_name": client.get("name") or client.get("hostname") or client.get("mac"),
        "hostname": client.get("hostname"),
        "ip": client.get("ip"),
        "is_wired": bool(client.get("is_wired")),
    }


def _reported_status(value: Any) -> Optional[EntityStatus]:
    if isinstance(value, str):
        try:
            return EntityStatus(value.lower())
        except ValueError:
            return None
    return None


__all__ = ["samples_from_message"]
