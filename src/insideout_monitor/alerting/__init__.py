"""Alert debouncing, batching and webhook delivery."""

from insideout_monitor.alerting.debounce import AlertDebouncer, AlertPhase, AlertState, transition
from insideout_monitor.alerting.dispatcher import BatchDispatcher
from insideout_monitor.alerting.engine import AlertEngine
from insideout_monitor.alerting.webhooks import WebhookClient

__all__ = [
    "AlertDebouncer",
    "AlertEngine",
    "AlertPhase",
    "AlertState",
    "BatchDispatcher",
    "WebhookClient",
    "transition",
]
