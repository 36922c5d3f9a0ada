from __future__ import annotations

import json

import pytest

from insideout_monitor.errors import MissingFields
from insideout_monitor.ingest.samples import samples_from_message
from insideout_monitor.ingest.validator import RoutedMessage, route
from insideout_monitor.state.types import EntityStatus, EntityType, MessageKind

NOW = 1_700_000_000


def _samples(message: dict):
    return samples_from_message(route(json.dumps(message).encode("utf-8"), NOW), NOW + 1)


def test_heartbeat_yields_one_device_sample() -> None:
    samples = _samples({"name": "laptop", "timestamp": NOW, "network_interfaces": [{"name": "eth0"}]})

    assert len(samples) == 1
    sample = samples[0]
    assert sample.entity_type is EntityType.DEVICE
    assert sample.entity_key == "laptop"
    assert sample.last_seen == NOW + 1
    assert sample.device_timestamp == NOW
    assert sample.reported_status is None
    assert sample.metadata["interface_count"] == 1


def test_ping_results_keyed_by_ip_with_reported_status() -> None:
    samples = _samples(
        {
            "type": "ping",
            "name": "pinger",
            "timestamp": NOW,
            "results": [
                {"ip": "10.0.0.1", "name": "router", "status": "online", "response_time_ms": 1.5},
                {"ip": "10.0.0.2", "status": "OFFLINE"},
                {"name": "no-ip", "status": "online"},
                "garbage",
            ],
        }
    )

    assert [s.entity_key for s in samples] == ["10.0.0.1", "10.0.0.2"]
    router, down = samples
    assert router.entity_type is EntityType.PING_TARGET
    assert router.reported_status is EntityStatus.ONLINE
    assert router.metadata["display_name"] == "router"
    assert router.metadata["monitor_name"] == "pinger"
    assert router.metadata["response_time_ms"] == 1.5
    assert down.reported_status is EntityStatus.OFFLINE
    assert down.metadata["display_name"] == "10.0.0.2"


def test_monitoring_results_keyed_by_url_or_path() -> None:
    samples = _samples(
        {
            "type": "monitoring",
            "timestamp": NOW,
            "results": [
                {"url": "https://example.org/health", "status": "online"},
                {"path": "/var/backups/latest.tar", "status": "stale"},
                {"type": "web"},
            ],
        }
    )

    assert [s.entity_key for s in samples] == ["https://example.org/health", "/var/backups/latest.tar"]
    assert all(s.entity_type is EntityType.MONITOR_CHECK for s in samples)
    assert samples[0].reported_status is EntityStatus.ONLINE
    assert samples[1].reported_status is None


def test_unifi_clients_keyed_by_lowercase_mac() -> None:
    samples = _samples(
        {
            "type": "unifi",
            "timestamp": NOW,
            "clients": [
                {"mac": "AA:BB:CC:00:11:22", "hostname": "printer", "ip": "10.0.0.9"},
                {"hostname": "no-mac"},
            ],
        }
    )

    assert len(samples) == 1
    assert samples[0].entity_type is EntityType.UNIFI_CLIENT
    assert samples[0].entity_key == "aa:bb:cc:00:11:22"
    assert samples[0].metadata["display_name"] == "printer"


def test_heartbeat_without_name_is_rejected() -> None:
    message = RoutedMessage(MessageKind.HEARTBEAT, NOW, 0, None, {"timestamp": NOW})

    with pytest.raises(MissingFields):
        samples_from_message(message, NOW)
