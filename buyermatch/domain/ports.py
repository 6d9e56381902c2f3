# buyermatch/domain/ports.py
from __future__ import annotations

from typing import Protocol

from .types import (
    BuyerCriteria,
    Coordinates,
    MatchActivity,
    MatchDealStage,
    MatchScore,
    PropertyDetails,
    PropertyMatch,
)


# ----------------------------
# Geocoding capability
# ----------------------------

class Geocoder(Protocol):
    async def geocode(self, query: str) -> Coordinates | None:
        """Coordinates for an address or ZIP, or None. Must not raise."""
        ...


# ----------------------------
# Record store
# ----------------------------

class RecordStore(Protocol):
    # buyers / properties (read side, plus coordinate write-back)
    async def get_buyer(self, contact_id: str) -> BuyerCriteria | None:
        ...

    async def list_buyers(self) -> list[BuyerCriteria]:
        ...

    async def get_property(self, property_code: str) -> PropertyDetails | None:
        ...

    async def list_properties(self) -> list[PropertyDetails]:
        ...

    async def set_buyer_coordinates(self, contact_id: str, coords: Coordinates) -> None:
        ...

    async def set_property_coordinates(self, property_code: str, coords: Coordinates) -> None:
        ...

    # matches
    async def get_match(self, buyer_id: str, property_id: str) -> PropertyMatch | None:
        ...

    async def get_match_by_id(self, match_id: int) -> PropertyMatch | None:
        ...

    async def list_matches(
        self,
        *,
        buyer_id: str | None = None,
        property_id: str | None = None,
    ) -> list[PropertyMatch]:
        ...

    async def create_match(
        self,
        buyer_id: str,
        property_id: str,
        score: MatchScore,
        activity: MatchActivity | None = None,
    ) -> PropertyMatch:
        """Raises MatchAlreadyExists if the pair is already stored."""
        ...

    async def update_match_score(self, match_id: int, score: MatchScore) -> PropertyMatch:
        ...

    async def set_stage(
        self,
        match_id: int,
        *,
        expected: MatchDealStage | None,
        stage: MatchDealStage,
    ) -> None:
        """Conditional write; raises StaleMatchState when `expected` no longer holds."""
        ...

    async def set_sync_relation_id(self, match_id: int, relation_id: str | None) -> None:
        ...

    async def append_activity(self, match_id: int, activity: MatchActivity) -> None:
        ...

    async def list_activities(self, match_id: int) -> list[MatchActivity]:
        ...

    async def delete_matches(
        self,
        *,
        buyer_id: str | None = None,
        property_id: str | None = None,
        include_advanced: bool = False,
    ) -> int:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...
