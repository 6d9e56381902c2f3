# tests/conftest.py
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from buyermatch.adapters.repos.records import SqlAlchemyRecordStore
from buyermatch.domain.types import BuyerCriteria, Coordinates, PropertyDetails
from buyermatch.domain.zipcodes import ZIP_COORDINATES
from buyermatch.models import Base


@pytest.fixture
async def engine():
    """
    Fresh in-memory DB per test. StaticPool makes all connections share the same
    in-memory database for the lifetime of this engine fixture.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def async_session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


@pytest.fixture
async def session(async_session_maker):
    async with async_session_maker() as s:
        yield s


@pytest.fixture
def store(session):
    return SqlAlchemyRecordStore(session)


def zip_point(zip_code: str) -> Coordinates:
    return ZIP_COORDINATES[zip_code]


@pytest.fixture
def make_buyer():
    def _make(contact_id: str = "B1", zip_code: str | None = "85001", **kw) -> BuyerCriteria:
        fields = dict(
            contact_id=contact_id,
            first_name="Pat",
            last_name="Buyer",
            email=f"{contact_id.lower()}@example.com",
            desired_beds=3,
            desired_baths=2,
            down_payment=50000,
            city="Phoenix",
            state="AZ",
            preferred_zip_codes=(zip_code,) if zip_code else (),
            coordinates=zip_point(zip_code) if zip_code else None,
        )
        fields.update(kw)
        return BuyerCriteria(**fields)

    return _make


@pytest.fixture
def make_property():
    def _make(code: str = "P1", zip_code: str | None = "85004", **kw) -> PropertyDetails:
        fields = dict(
            property_code=code,
            address=f"{code} Main St",
            city="Phoenix",
            state="AZ",
            zip_code=zip_code,
            price=180000,
            beds=3,
            baths=2,
            sqft=1500,
            coordinates=zip_point(zip_code) if zip_code else None,
        )
        fields.update(kw)
        return PropertyDetails(**fields)

    return _make


class FakeGeocoder:
    """Answers from a dict; records every query it was asked."""

    def __init__(self, answers=None, *, fail_on=()):
        self.answers = dict(answers or {})
        self.fail_on = set(fail_on)
        self.calls: list[str] = []

    async def geocode(self, query):
        self.calls.append(query)
        if query in self.fail_on:
            raise RuntimeError(f"geocoder down for {query}")
        return self.answers.get(query)


class FakeSink:
    def __init__(self, *, ok=True, relation_id=None, error="boom"):
        from buyermatch.integrations.base import SinkDeliveryResult

        self._result = SinkDeliveryResult(ok=ok, error=None if ok else error, relation_id=relation_id)
        self.delivered: list[tuple[str, dict]] = []

    async def deliver(self, event_type, payload):
        self.delivered.append((event_type, payload))
        return self._result


@pytest.fixture
def fake_geocoder():
    return FakeGeocoder


@pytest.fixture
def fake_sink():
    return FakeSink
