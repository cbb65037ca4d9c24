"""
Purpose: Inbound webhook handling for call outcomes.
What it does:
- verify_webhook_signature: HMAC-SHA256 of the raw body against the
  x-ringg-signature header, when a webhook secret is configured.
- map_outcome: free-text vendor outcome -> CallOutcome by keyword.
- parse_webhook: raw body -> CallResult (call id, outcome, raw payload).

Rule: Parsing only. Deciding what an outcome means for a journey is the
dispatcher's job.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

from dispatch.voice_client import CallOutcome

load_dotenv()

SIGNATURE_HEADER = "x-ringg-signature"


class WebhookError(ValueError):
    """Webhook body could not be parsed or has no call id."""
    pass


@dataclass(frozen=True)
class CallResult:
    call_id: str
    outcome: CallOutcome
    status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def map_outcome(outcome: Optional[str]) -> CallOutcome:
    """
    Keyword mapping, first match wins:
    accept/success -> ACCEPTED, reject/decline -> REJECTED,
    no_answer/no answer -> NO_ANSWER, busy -> BUSY, fail -> FAILED.
    Anything else (or nothing) is UNKNOWN.
    """
    if not outcome:
        return CallOutcome.UNKNOWN

    text = str(outcome).lower()
    if "accept" in text or "success" in text:
        return CallOutcome.ACCEPTED
    if "reject" in text or "decline" in text:
        return CallOutcome.REJECTED
    if "no_answer" in text or "no answer" in text:
        return CallOutcome.NO_ANSWER
    if "busy" in text:
        return CallOutcome.BUSY
    if "fail" in text:
        return CallOutcome.FAILED
    return CallOutcome.UNKNOWN


def sign_payload(raw_body: Union[str, bytes], secret: str) -> str:
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    raw_body: Union[str, bytes],
    signature: Optional[str],
    secret: Optional[str] = None,
) -> bool:
    """
    True when no secret is configured (verification disabled) or when the
    signature matches. A configured secret with a missing signature is rejected.
    """
    secret = secret if secret is not None else os.getenv("RINGG_WEBHOOK_SECRET")
    if not secret:
        return True
    if not signature:
        return False

    expected = sign_payload(raw_body, secret)
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    return hmac.compare_digest(expected, provided)


def parse_webhook(raw_body: Union[str, bytes, Dict[str, Any]]) -> CallResult:
    if isinstance(raw_body, dict):
        payload = raw_body
    else:
        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            raise WebhookError(f"Webhook body is not JSON: {e}") from e

    if not isinstance(payload, dict):
        raise WebhookError("Webhook body must be a JSON object")

    call_id = payload.get("callId") or payload.get("id")
    if not call_id:
        raise WebhookError("Webhook payload has no callId")

    return CallResult(
        call_id=str(call_id),
        outcome=map_outcome(payload.get("outcome")),
        status=payload.get("status"),
        raw=payload,
    )
