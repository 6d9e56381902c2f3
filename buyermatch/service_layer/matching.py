# buyermatch/service_layer/matching.py
from __future__ import annotations

import asyncio
import dataclasses
import logging
import weakref
from dataclasses import dataclass, field
from typing import Any

from ..config import settings
from ..domain.errors import BuyerNotFound, MatchAlreadyExists, PropertyNotFound
from ..domain.ports import RecordStore
from ..domain.ranking import BuyerPropertyRanking, rank_for_buyer, sort_by_proximity
from ..domain.scoring import DEFAULT_WEIGHTS, ScoringWeights, score
from ..domain.stages import is_terminal
from ..domain.types import (
    ActivityType,
    BuyerCriteria,
    MatchActivity,
    PropertyDetails,
    PropertyMatch,
)
from ..geo.resolver import GeoResolver

log = logging.getLogger(__name__)

# One lock per (buyer, property) for the process; entries vanish when unused.
_PAIR_LOCKS: "weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()


def _pair_lock(buyer_id: str, property_id: str) -> asyncio.Lock:
    key = (buyer_id, property_id)
    lock = _PAIR_LOCKS.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _PAIR_LOCKS[key] = lock
    return lock


@dataclass(frozen=True)
class MatchRunRequest:
    buyer_id: str | None = None
    property_id: str | None = None
    min_score: int = field(default_factory=lambda: int(settings.MATCH_MIN_SCORE))
    refresh_all: bool = False


@dataclass
class MatchRunResult:
    buyers_processed: int = 0
    properties_processed: int = 0
    matches_created: int = 0
    matches_updated: int = 0
    duplicates_skipped: int = 0
    within_radius: int = 0
    below_threshold: int = 0
    failed: int = 0
    cancelled: bool = False
    concerns: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def _skip_existing(existing: PropertyMatch, refresh_all: bool) -> bool:
    """
    Human-advanced matches are left alone unless refresh_all; terminal ones
    (closed or not interested) are never rescored.
    """
    if existing.stage is None:
        return False
    if is_terminal(existing.stage):
        return True
    return not refresh_all


class MatchBatchRunner:
    """
    Scores a buyer set x property set and upserts matches that clear the
    threshold. One bad pair never fails the batch: it is logged, counted in
    `failed`, and described in `concerns`.

    Pairs run sequentially against one store; the per-pair lock plus the
    store's unique key keep overlapping runs from double-creating a match.
    """

    def __init__(
        self,
        store: RecordStore,
        resolver: GeoResolver | None = None,
        *,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.weights = weights

    async def _buyers(self, req: MatchRunRequest) -> list[BuyerCriteria]:
        if req.buyer_id:
            b = await self.store.get_buyer(req.buyer_id)
            if b is None:
                raise BuyerNotFound(req.buyer_id)
            return [b]
        return await self.store.list_buyers()

    async def _properties(self, req: MatchRunRequest) -> list[PropertyDetails]:
        if req.property_id:
            p = await self.store.get_property(req.property_id)
            if p is None:
                raise PropertyNotFound(req.property_id)
            return [p]
        return await self.store.list_properties()

    # ---------------------------
    # Coordinates
    # ---------------------------
    async def locate_buyers(self, buyers: list[BuyerCriteria]) -> list[BuyerCriteria]:
        if self.resolver is None:
            return buyers
        missing = [i for i, b in enumerate(buyers) if b.coordinates is None]
        found = await self.resolver.resolve_many(self.resolver.buyer_query(buyers[i]) for i in missing)
        out = list(buyers)
        for i, coords in zip(missing, found):
            if coords is None:
                continue
            b = buyers[i]
            try:
                await self.store.set_buyer_coordinates(b.contact_id, coords)
            except Exception as e:
                log.warning("could not store coordinates for buyer %s: %s", b.contact_id, e)
                continue
            out[i] = dataclasses.replace(b, coordinates=coords)
        return out

    async def locate_properties(self, props: list[PropertyDetails]) -> list[PropertyDetails]:
        if self.resolver is None:
            return props
        missing = [i for i, p in enumerate(props) if p.coordinates is None]
        found = await self.resolver.resolve_many(self.resolver.property_query(props[i]) for i in missing)
        out = list(props)
        for i, coords in zip(missing, found):
            if coords is None:
                continue
            p = props[i]
            try:
                await self.store.set_property_coordinates(p.property_code, coords)
            except Exception as e:
                log.warning("could not store coordinates for property %s: %s", p.property_code, e)
                continue
            out[i] = dataclasses.replace(p, coordinates=coords)
        return out

    # ---------------------------
    # Run
    # ---------------------------
    async def run(
        self,
        request: MatchRunRequest | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> MatchRunResult:
        req = request or MatchRunRequest()
        result = MatchRunResult()

        buyers = await self._buyers(req)
        props = await self._properties(req)
        result.buyers_processed = len(buyers)
        result.properties_processed = len(props)

        buyers = await self.locate_buyers(buyers)
        props = await self.locate_properties(props)
        await self.store.commit()

        for b in buyers:
            for p in props:
                if cancel is not None and cancel.is_set():
                    result.cancelled = True
                    break
                try:
                    await self._process_pair(b, p, req, result)
                except Exception as e:
                    log.exception("matching failed for buyer=%s property=%s", b.contact_id, p.property_code)
                    result.failed += 1
                    result.concerns.append(f"{b.contact_id}/{p.property_code}: {type(e).__name__}: {e}")
                    await self.store.rollback()
            if result.cancelled:
                break

        log.info(
            "match run: buyers=%d properties=%d created=%d updated=%d skipped=%d below=%d failed=%d%s",
            result.buyers_processed,
            result.properties_processed,
            result.matches_created,
            result.matches_updated,
            result.duplicates_skipped,
            result.below_threshold,
            result.failed,
            " (cancelled)" if result.cancelled else "",
        )
        return result

    async def _process_pair(
        self,
        buyer: BuyerCriteria,
        prop: PropertyDetails,
        req: MatchRunRequest,
        result: MatchRunResult,
    ) -> None:
        async with _pair_lock(buyer.contact_id, prop.property_code):
            existing = await self.store.get_match(buyer.contact_id, prop.property_code)
            if existing is not None and _skip_existing(existing, req.refresh_all):
                result.duplicates_skipped += 1
                return

            s = score(buyer, prop, self.weights)
            if s.total < req.min_score:
                result.below_threshold += 1
                return

            created = False
            if existing is None:
                activity = MatchActivity.new(
                    ActivityType.match_created,
                    f"Matched with score {s.total}/100",
                    metadata={"score": s.total, "isPriority": s.is_priority},
                )
                try:
                    await self.store.create_match(buyer.contact_id, prop.property_code, s, activity)
                    created = True
                except MatchAlreadyExists:
                    # another process won the insert; treat it as an existing match
                    existing = await self.store.get_match(buyer.contact_id, prop.property_code)
                    if existing is None or _skip_existing(existing, req.refresh_all):
                        result.duplicates_skipped += 1
                        return
                    await self.store.update_match_score(existing.id, s)
            else:
                await self.store.update_match_score(existing.id, s)

            await self.store.commit()

        if created:
            result.matches_created += 1
        else:
            result.matches_updated += 1
        if s.is_priority:
            result.within_radius += 1


# ---------------------------
# Single-buyer views
# ---------------------------
async def rank_properties_for_buyer(
    store: RecordStore,
    buyer_id: str,
    *,
    resolver: GeoResolver | None = None,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    order: str = "score",
) -> BuyerPropertyRanking:
    """
    Score every stored property for one buyer without persisting anything.
    order="proximity" re-sorts each list by tier, then score band, then distance.
    """
    if order not in ("score", "proximity"):
        raise ValueError(f"unknown order {order!r}")
    buyer = await store.get_buyer(buyer_id)
    if buyer is None:
        raise BuyerNotFound(buyer_id)
    props = await store.list_properties()

    if resolver is not None:
        runner = MatchBatchRunner(store, resolver)
        buyer = (await runner.locate_buyers([buyer]))[0]
        props = await runner.locate_properties(props)
        await store.commit()

    ranking = rank_for_buyer(buyer, props, weights=weights)
    if order == "proximity":
        ranking = dataclasses.replace(
            ranking,
            priority=tuple(sort_by_proximity(ranking.priority)),
            explore=tuple(sort_by_proximity(ranking.explore)),
        )
    return ranking


async def clear_matches(
    store: RecordStore,
    *,
    buyer_id: str | None = None,
    property_id: str | None = None,
    include_advanced: bool = False,
) -> int:
    """
    Explicit deletion. Matches a human has moved into the pipeline survive
    unless include_advanced is set.
    """
    n = await store.delete_matches(
        buyer_id=buyer_id,
        property_id=property_id,
        include_advanced=include_advanced,
    )
    await store.commit()
    log.info("cleared %d matches (buyer=%s property=%s advanced=%s)", n, buyer_id, property_id, include_advanced)
    return n
