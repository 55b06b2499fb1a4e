"""Workflow trigger for journal events."""

from __future__ import annotations

from datetime import datetime, UTC
import hashlib
import hmac
import json
import uuid

import httpx

from ..utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)

SIGNATURE_HEADER = "X-Therma-Signature"
EVENT_TYPE_HEADER = "X-Therma-Event-Type"


def _utc_now_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def _signature(secret: str, body: str) -> str:
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


class WorkflowNotifier:
    """Best-effort POST of events to the workflow layer.

    Payloads carry ids only, never PHI. Delivery failures are logged and
    swallowed; retrying is the workflow layer's job.
    """

    def __init__(
        self,
        url: str,
        *,
        secret: str | None = None,
        timeout: float = 3.0,
        client: httpx.Client | None = None,
    ):
        self.url = url
        self._secret = secret or ""
        self._client = client or httpx.Client(timeout=timeout)

    def notify(self, event_type: str, payload: dict) -> bool:
        envelope = {
            "event_id": f"evt_{uuid.uuid4().hex}",
            "event_type": event_type,
            "ts": _utc_now_iso(),
            "payload": payload,
        }
        body = json.dumps(envelope, ensure_ascii=True, sort_keys=True)
        headers = {
            "Content-Type": "application/json",
            EVENT_TYPE_HEADER: event_type,
        }
        if self._secret:
            headers[SIGNATURE_HEADER] = _signature(self._secret, body)

        try:
            response = self._client.post(self.url, content=body, headers=headers)
        except httpx.HTTPError as err:
            logger.warning("Workflow notification failed", event_type=event_type, error=str(err))
            return False

        if response.status_code >= 400:
            logger.warning(
                "Workflow notification rejected",
                event_type=event_type,
                http_status=response.status_code,
            )
            return False

        logger.info("Workflow notified", event_type=event_type, event_id=envelope["event_id"])
        return True

    def close(self) -> None:
        self._client.close()
