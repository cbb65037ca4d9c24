#Expose the high-level pipeline pieces:
#Voice-call client (Ringg) and its call/outcome types
#Webhook outcome parsing / signature check
#Event log
#Dispatcher orchestrator (the "one object" entry point)

from .voice_client import CallHandle, CallOutcome, CallPurpose, CallTriggerError, RinggClient
from .call_outcomes import CallResult, WebhookError, map_outcome, parse_webhook, verify_webhook_signature
from .event_log import EventLog
from .dispatcher import Dispatcher #the main object: load a journey, tick it, feed it call outcomes

__all__ = [
    "CallHandle",
    "CallOutcome",
    "CallPurpose",
    "CallTriggerError",
    "RinggClient",
    "CallResult",
    "WebhookError",
    "map_outcome",
    "parse_webhook",
    "verify_webhook_signature",
    "EventLog",
    "Dispatcher",
]
