"""
Unit tests for the conditional-update transition guard.
"""
import pytest
from sqlalchemy import select

from tcgmarket.core.database import unit_of_work
from tcgmarket.core.exceptions import InvalidStateError, NotFoundError
from tcgmarket.models.marketplace import Listing, ListingEvent, ListingStatus
from tcgmarket.services.listing_lifecycle import ARCHIVE, MARK_SOLD, PUBLISH
from tcgmarket.services.transition_guard import apply_transition


def _listing(**overrides) -> Listing:
    fields = dict(
        user_id="seller",
        title="Pikachu Jungle",
        price_cents=500,
        quantity=1,
        game="POKEMON",
        category="CARD",
        language="EN",
        condition="NM",
        status=ListingStatus.DRAFT.value,
    )
    fields.update(overrides)
    return Listing(**fields)


def _event(listing: Listing) -> ListingEvent:
    return ListingEvent(listing_id=listing.id, event_type="PUBLISHED", actor_user_id="seller")


@pytest.fixture
async def listing_id(session_factory) -> str:
    async with session_factory() as session:
        listing = _listing()
        session.add(listing)
        await session.commit()
        return listing.id


def test_transition_allows():
    assert PUBLISH.allows("DRAFT")
    assert not PUBLISH.allows("PUBLISHED")
    assert ARCHIVE.source_values == ("DRAFT", "PUBLISHED")


async def test_apply_transition_writes_status_and_event(session_factory, listing_id):
    async with session_factory() as session:
        async with unit_of_work(session):
            listing = await apply_transition(session, Listing, listing_id, PUBLISH, event=_event)
        assert listing.status == "PUBLISHED"

    async with session_factory() as session:
        events = (
            await session.execute(select(ListingEvent).where(ListingEvent.listing_id == listing_id))
        ).scalars().all()
    assert [event.event_type for event in events] == ["PUBLISHED"]


async def test_apply_transition_conflict_names_current_status(session_factory, listing_id):
    async with session_factory() as session:
        with pytest.raises(InvalidStateError) as exc_info:
            async with unit_of_work(session):
                await apply_transition(session, Listing, listing_id, MARK_SOLD, event=_event)

    error = exc_info.value
    assert error.status_code == 409
    assert error.current_status == "DRAFT"
    assert "DRAFT" in error.detail

    async with session_factory() as session:
        events = (
            await session.execute(select(ListingEvent).where(ListingEvent.listing_id == listing_id))
        ).scalars().all()
    assert events == []


async def test_apply_transition_not_found(session_factory):
    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            async with unit_of_work(session):
                await apply_transition(session, Listing, "missing-id", PUBLISH)


async def test_apply_transition_writes_extra_values(session_factory, listing_id):
    async with session_factory() as session:
        async with unit_of_work(session):
            await apply_transition(session, Listing, listing_id, PUBLISH, values={"is_hidden": True})

    async with session_factory() as session:
        listing = await session.get(Listing, listing_id)
    assert listing.status == "PUBLISHED"
    assert listing.is_hidden is True
