# buyermatch/integrations/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class SinkDeliveryResult:
    ok: bool
    error: str | None = None
    # id of the external buyer/property relation the sink created, if any
    relation_id: str | None = None


class PipelineSyncSink(Protocol):
    async def deliver(self, event_type: str, payload: dict[str, Any]) -> SinkDeliveryResult:
        ...
