# buyermatch/integrations/webhook.py
from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

import httpx

from .base import PipelineSyncSink, SinkDeliveryResult

SIGNATURE_HEADER = "X-BuyerMatch-Signature"


class WebhookSink(PipelineSyncSink):
    """
    POSTs {"type", "data"} as JSON. A 2xx reply may carry the external
    relation id as `relation_id` (or `relationId`) in a JSON body.
    """

    def __init__(
        self,
        url: str,
        secret: str | None = None,
        timeout_s: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.secret = secret
        self.timeout_s = timeout_s
        self.transport = transport

    def sign(self, body: bytes) -> str | None:
        if not self.secret:
            return None
        return hmac.new(self.secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    async def deliver(self, event_type: str, payload: dict[str, Any]) -> SinkDeliveryResult:
        body = json.dumps({"type": event_type, "data": payload}, default=str).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        sig = self.sign(body)
        if sig:
            headers[SIGNATURE_HEADER] = sig

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
                r = await client.post(self.url, content=body, headers=headers)
        except httpx.HTTPError as e:
            return SinkDeliveryResult(ok=False, error=f"{type(e).__name__}: {e}")

        if not (200 <= r.status_code < 300):
            return SinkDeliveryResult(ok=False, error=f"HTTP {r.status_code}: {r.text[:500]}")

        relation_id = None
        try:
            data = r.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            rid = data.get("relation_id", data.get("relationId"))
            relation_id = str(rid) if rid else None
        return SinkDeliveryResult(ok=True, relation_id=relation_id)
