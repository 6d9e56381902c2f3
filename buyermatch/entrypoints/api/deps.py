# buyermatch/entrypoints/api/deps.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ...adapters.repos.records import SqlAlchemyRecordStore
from ...db import get_session
from ...domain.errors import (
    InvalidStageTransition,
    InvariantViolation,
    RecordNotFound,
    StaleMatchState,
)
from ...domain.stages import StageMachine
from ...geo.resolver import GeoResolver


def get_store(session: AsyncSession = Depends(get_session)) -> SqlAlchemyRecordStore:
    return SqlAlchemyRecordStore(session)


def get_resolver(request: Request) -> GeoResolver:
    return request.app.state.geo_resolver


def get_stage_machine(request: Request) -> StageMachine:
    return request.app.state.stage_machine


@contextmanager
def translate_errors() -> Iterator[None]:
    """Domain errors -> HTTP status codes."""
    try:
        yield
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except InvalidStageTransition as e:
        raise HTTPException(
            status_code=409,
            detail={"error": str(e), "invariant": e.invariant},
        ) from e
    except InvariantViolation as e:
        raise HTTPException(
            status_code=422,
            detail={"error": str(e), "invariant": e.invariant},
        ) from e
    except StaleMatchState as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
