"""HTTP webhook client for Discord, Teams, and generic JSON endpoints."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from insideout_monitor.config.loader import WebhookSink
from insideout_monitor.errors import DeliveryFailed
from insideout_monitor.state.types import AlertEvent, AlertEventType, DeliveryResult, EntityType

LOGGER = logging.getLogger(__name__)

FOOTER = "Inside-Out Monitor"

_TITLES = {
    AlertEventType.OFFLINE: "Offline",
    AlertEventType.ONLINE: "Back Online",
    AlertEventType.NEW_ENTITY: "Discovered",
}

_VERBS = {
    AlertEventType.OFFLINE: "is now offline",
    AlertEventType.ONLINE: "is back online",
    AlertEventType.NEW_ENTITY: "was seen for the first time",
}

_COLORS = {
    AlertEventType.OFFLINE: 0xFF0000,
    AlertEventType.ONLINE: 0x00FF00,
    AlertEventType.NEW_ENTITY: 0x0099FF,
}

_ENTITY_LABELS = {
    EntityType.DEVICE: "Device",
    EntityType.PING_TARGET: "Ping Target",
    EntityType.MONITOR_CHECK: "Check",
    EntityType.UNIFI_CLIENT: "LAN Client",
}


class WebhookClient:
    """Posts alerts to webhook URLs; failures come back as DeliveryResult, never raise."""

    def __init__(self, *, timeout_s: float = 5.0, session: Optional[requests.Session] = None) -> None:
        self._timeout_s = max(float(timeout_s), 0.1)
        self._session = session or requests.Session()

    def deliver(self, url: str, alert: AlertEvent, *, sink: Optional[WebhookSink] = None) -> DeliveryResult:
        kind = sink.kind if sink else "generic"
        name = sink.name if sink else url
        try:
            payload = build_payload(alert, kind=kind, mentions=sink.mentions if sink else ())
            start = time.perf_counter()
            self._post(url, payload)
            latency_ms = (time.perf_counter() - start) * 1000.0
        except DeliveryFailed as exc:
            LOGGER.warning("Webhook %s/%s failed: %s", kind, name, exc)
            return DeliveryResult(success=False, sink_name=name, sink_kind=kind, error=str(exc))
        LOGGER.debug("Webhook %s/%s delivered %s in %.2fms", kind, name, alert.event_type.value, latency_ms)
        return DeliveryResult(success=True, sink_name=name, sink_kind=kind)

    def _post(self, url: str, payload: Dict[str, Any]) -> None:
        try:
            response = self._session.post(url, json=payload, timeout=self._timeout_s)
            response.raise_for_status()
        except requests.HTTPError as exc:
            body = exc.response.text[:200] if exc.response is not None else ""
            status = exc.response.status_code if exc.response is not None else "?"
            raise DeliveryFailed(f"HTTP {status}: {body}".strip()) from exc
        except requests.RequestException as exc:
            raise DeliveryFailed(f"{exc.__class__.__name__}: {exc}") from exc

    def close(self) -> None:
        self._session.close()


def build_payload(alert: AlertEvent, *, kind: str = "generic", mentions: tuple[str, ...] = ()) -> Dict[str, Any]:
    if kind == "discord":
        return _discord_payload(alert, mentions)
    if kind == "teams":
        return _teams_payload(alert)
    return {
        "entity_type": alert.entity_type.value,
        "entity_key": alert.entity_key,
        "event_type": alert.event_type.value,
        "occurred_at": alert.occurred_at,
        "title": _title(alert),
        "context": dict(alert.context),
    }


def _title(alert: AlertEvent) -> str:
    label = _ENTITY_LABELS.get(alert.entity_type, "Entity")
    return f"{label} {_TITLES[alert.event_type]}"


def _display_name(alert: AlertEvent) -> str:
    name = alert.context.get("display_name")
    if isinstance(name, str) and name and name != alert.entity_key:
        return f"{name} ({alert.entity_key})"
    return alert.entity_key


def _facts(alert: AlertEvent) -> List[Dict[str, str]]:
    facts = [{"name": _ENTITY_LABELS.get(alert.entity_type, "Entity"), "value": _display_name(alert)}]
    last_seen = alert.context.get("last_seen")
    if isinstance(last_seen, (int, float)):
        facts.append({"name": "Last Seen", "value": _iso(last_seen)})
    response_time = alert.context.get("response_time_ms")
    if isinstance(response_time, (int, float)):
        facts.append({"name": "Response Time", "value": f"{response_time:.2f} ms"})
    return facts


def _discord_payload(alert: AlertEvent, mentions: tuple[str, ...]) -> Dict[str, Any]:
    embed = {
        "title": _title(alert),
        "description": f"**{_display_name(alert)}** {_VERBS[alert.event_type]}",
        "color": _COLORS[alert.event_type],
        "timestamp": _iso(alert.occurred_at),
        "fields": [{"name": fact["name"], "value": fact["value"], "inline": True} for fact in _facts(alert)],
        "footer": {"text": FOOTER},
    }
    payload: Dict[str, Any] = {"embeds": [embed]}
    if mentions:
        payload["content"] = " ".join(mentions)
    return payload


def _teams_payload(alert: AlertEvent) -> Dict[str, Any]:
    return {
        "@type": "MessageCard",
        "@context": "https://schema.org/extensions",
        "themeColor": f"{_COLORS[alert.event_type]:06X}",
        "summary": _title(alert),
        "sections": [
            {
                "activityTitle": _title(alert),
                "activitySubtitle": FOOTER,
                "facts": [{"name": f"{fact['name']}:", "value": fact["value"]} for fact in _facts(alert)],
            }
        ],
    }


def _iso(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat().replace("+00:00", "Z")


__all__ = ["WebhookClient", "build_payload"]
