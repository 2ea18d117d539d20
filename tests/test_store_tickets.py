import pytest

from vouchbot.core import ConstraintViolation, NotFound, ValidationError

from conftest import make_ticket


@pytest.mark.asyncio
async def test_create_and_read_back(store):
    created = await make_ticket(store, "als-1")

    assert created.id > 0
    assert created.status == "open"
    assert created.type == "regular"
    assert created.priority == "medium"
    assert created.closed_at is None
    assert await store.get_ticket("als-1") == created
    assert await store.get_ticket_by_channel_id("chan-als-1") == created
    assert await store.get_ticket("missing") is None


@pytest.mark.asyncio
async def test_tickets_by_user_and_status(store):
    await make_ticket(store, "als-1")
    await make_ticket(store, "als-2")
    await make_ticket(store, "av-1", user_id="u-200", game="av")

    mine = await store.get_tickets_by_user("u-100")
    assert {t.ticket_number for t in mine} == {"als-1", "als-2"}
    assert len(await store.get_all_tickets()) == 3
    assert len(await store.get_all_tickets("open")) == 3

    await store.close_ticket("als-2")

    assert [t.ticket_number for t in await store.get_all_tickets("closed")] == ["als-2"]
    assert len(await store.get_all_tickets("open")) == 2

    with pytest.raises(ValidationError):
        await store.get_all_tickets("archived")


@pytest.mark.asyncio
async def test_new_ticket_is_visible_in_cached_user_listing(store):
    await make_ticket(store, "als-1")
    assert len(await store.get_tickets_by_user("u-100")) == 1

    await make_ticket(store, "als-2")
    assert len(await store.get_tickets_by_user("u-100")) == 2


@pytest.mark.asyncio
async def test_claim_unclaim_close(store):
    await make_ticket(store, "als-1")

    claimed = await store.claim_ticket("als-1", "h-1", "helper#0001")
    assert (claimed.status, claimed.claimed_by, claimed.claimed_by_tag) == ("claimed", "h-1", "helper#0001")

    reopened = await store.unclaim_ticket("als-1")
    assert (reopened.status, reopened.claimed_by, reopened.claimed_by_tag) == ("open", None, None)

    await store.claim_ticket("als-1", "h-2", "other#0002")
    closed = await store.close_ticket("als-1")
    assert closed.status == "closed"
    assert closed.closed_at is not None
    assert closed.claimed_by == "h-2"
    assert (await store.get_ticket("als-1")).status == "closed"


@pytest.mark.asyncio
async def test_open_ticket_can_close_directly(store):
    await make_ticket(store, "als-1")
    closed = await store.update_ticket("als-1", status="closed")
    assert closed.closed_at is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("target", ["open", "claimed"])
async def test_closed_ticket_cannot_reopen(store, target):
    await make_ticket(store, "als-1")
    await store.close_ticket("als-1")

    with pytest.raises(ValidationError):
        await store.update_ticket("als-1", status=target, claimed_by="h-1")

    assert (await store.get_ticket("als-1")).status == "closed"


@pytest.mark.asyncio
async def test_unknown_status_rejected(store):
    await make_ticket(store, "als-1")
    with pytest.raises(ValidationError):
        await store.update_ticket("als-1", status="archived")


@pytest.mark.asyncio
async def test_claim_requires_claimer(store):
    await make_ticket(store, "als-1")
    with pytest.raises(ValidationError):
        await store.update_ticket("als-1", status="claimed")


@pytest.mark.asyncio
async def test_closed_at_only_on_closed_tickets(store):
    await make_ticket(store, "als-1")
    with pytest.raises(ValidationError):
        await store.update_ticket("als-1", closed_at=123)


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["id", "ticket_number", "user_id", "channel_id", "created_at"])
async def test_identity_fields_are_immutable(store, field):
    await make_ticket(store, "als-1")
    with pytest.raises(ValidationError):
        await store.update_ticket("als-1", **{field: "x"})


@pytest.mark.asyncio
async def test_unknown_update_field_rejected(store):
    await make_ticket(store, "als-1")
    with pytest.raises(ValidationError):
        await store.update_ticket("als-1", colour="red")


@pytest.mark.asyncio
async def test_update_missing_ticket_is_not_found(store):
    with pytest.raises(NotFound):
        await store.update_ticket("nope", goal="x")


@pytest.mark.asyncio
async def test_duplicate_ticket_number_rejected(store):
    await make_ticket(store, "als-1")
    with pytest.raises(ConstraintViolation):
        await make_ticket(store, "als-1", channel_id="another-channel")


@pytest.mark.asyncio
async def test_create_validation(store):
    with pytest.raises(ValidationError):
        await store.create_ticket(ticket_number="x-1", user_id="u", user_tag="t", channel_id="c")
    with pytest.raises(ValidationError):
        await make_ticket(store, "x-2", status="closed")
    with pytest.raises(ValidationError):
        await make_ticket(store, "x-3", status="claimed")
    with pytest.raises(ValidationError):
        await make_ticket(store, "x-4", type="vip")
    with pytest.raises(ValidationError):
        await make_ticket(store, "x-5", priority="urgent")
    with pytest.raises(ValidationError):
        await make_ticket(store, "x-6", colour="red")


@pytest.mark.asyncio
async def test_paid_ticket_can_start_claimed(store):
    ticket = await make_ticket(
        store, "paid-1", type="paid", status="claimed", claimed_by="h-1", claimed_by_tag="helper#0001"
    )
    assert ticket.status == "claimed"


@pytest.mark.asyncio
async def test_support_ticket_fields(store):
    ticket = await store.create_ticket(
        ticket_number="billing-1", user_id="u-1", user_tag="a#1", channel_id="c-1", contact="dm",
        type="support", category="billing", subject="refund", description="charged twice", priority="high",
    )
    updated = await store.update_ticket("billing-1", priority="critical")

    assert (ticket.category, ticket.subject, ticket.priority) == ("billing", "refund", "high")
    assert updated.priority == "critical"
    assert updated.description == "charged twice"


# ----------------------------------------------------------------------
# Helpers and paid helper profiles
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_helper_update_rules(store):
    await store.create_helper("h-1", "helper#0001")

    promoted = await store.update_helper("h-1", helper_rank="Senior", is_paid_helper=True)
    assert (promoted.helper_rank, promoted.is_paid_helper) == ("Senior", True)
    assert (await store.get_helper("h-1")).helper_rank == "Senior"

    with pytest.raises(ValidationError):
        await store.update_helper("h-1", total_vouches=99)
    with pytest.raises(ValidationError):
        await store.update_helper("h-1", user_id="h-2")
    with pytest.raises(NotFound):
        await store.update_helper("h-9", helper_rank="Senior")


@pytest.mark.asyncio
async def test_duplicate_helper_rejected(store):
    await store.create_helper("h-1", "helper#0001")
    with pytest.raises(ConstraintViolation):
        await store.create_helper("h-1", "helper#0001")


@pytest.mark.asyncio
async def test_paid_helper_profile_lifecycle(store):
    with pytest.raises(NotFound):
        await store.create_paid_helper("h-1", "helper#0001", "fast clears")

    await store.create_helper("h-1", "helper#0001", is_paid_helper=True)
    await store.create_helper("h-2", "other#0002", is_paid_helper=True)
    profile = await store.create_paid_helper("h-1", "helper#0001", "fast clears", bio_set_date=1)
    await store.create_paid_helper("h-2", "other#0002", "cheap raids")

    assert profile.vouches_for_access == 3
    assert await store.get_paid_helper("h-1") == profile

    updated = await store.update_paid_helper("h-1", bio="fast clears, all raids")
    assert updated.bio == "fast clears, all raids"
    assert updated.bio_set_date > 1

    await store.update_paid_helper("h-2", bio="[REMOVED BY STAFF]")
    assert len(await store.get_all_paid_helpers()) == 2
    assert [p.user_id for p in await store.get_active_paid_helpers()] == ["h-1"]

    with pytest.raises(NotFound):
        await store.update_paid_helper("h-9", bio="x")
    with pytest.raises(ValidationError):
        await store.update_paid_helper("h-1", user_id="h-3")


@pytest.mark.asyncio
async def test_claimed_ticket_cannot_be_taken_by_another_helper(store):
    await make_ticket(store, "als-1")
    await store.claim_ticket("als-1", "h-1", "helper#0001")

    with pytest.raises(ValidationError):
        await store.claim_ticket("als-1", "h-2", "other#0002")

    assert (await store.get_ticket("als-1")).claimed_by == "h-1"


@pytest.mark.asyncio
async def test_reclaim_by_same_helper_and_reassign_via_unclaim(store):
    await make_ticket(store, "als-1")
    await store.claim_ticket("als-1", "h-1", "helper#0001")

    again = await store.claim_ticket("als-1", "h-1", "helper#0001")
    assert again.claimed_by == "h-1"

    await store.unclaim_ticket("als-1")
    reassigned = await store.claim_ticket("als-1", "h-2", "other#0002")
    assert (reassigned.status, reassigned.claimed_by) == ("claimed", "h-2")
