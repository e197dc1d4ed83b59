"""Tests for the incremental calendar sync engine.

Uses InMemoryCalendarRepository / InMemoryDealRepository and a scripted
FakeCalendarClient that paginates a fixed upstream event list (full mode) or
a change list (incremental mode) and issues a fresh sync token on the last
page.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.tracker.calendar.schemas import SyncMode, SyncStateUpdate, SyncStatus
from src.tracker.calendar.sync import CalendarSyncEngine
from src.tracker.services.google.calendar import CalendarAPIError, SyncTokenInvalidError
from src.tracker.services.google.models import CalendarPage, GoogleCalendarEvent
from src.tracker.services.google.oauth import TokenInvalidError

START = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


def gevent(
    event_id: str,
    attendees: list[str],
    summary: str = "Sync",
    status: str = "confirmed",
) -> GoogleCalendarEvent:
    if status == "cancelled":
        return GoogleCalendarEvent(id=event_id, status="cancelled", summary="(Deleted)")
    return GoogleCalendarEvent(
        id=event_id,
        status=status,
        summary=summary,
        start=START,
        end=START + timedelta(minutes=30),
        attendees=attendees,
        organizer_email=attendees[0] if attendees else None,
    )


class FakeCalendarClient:
    """Scripted stand-in for GoogleCalendarClient.list_events_page."""

    def __init__(self, events: list[GoogleCalendarEvent] | None = None) -> None:
        self.events = list(events or [])
        self.changes: list[GoogleCalendarEvent] = []
        self.invalid_tokens: set[str] = set()
        self.errors: dict[str, Exception] = {}
        self.calls: list[dict] = []
        self._token_seq = 0

    async def list_events_page(
        self,
        user_id: str,
        *,
        sync_token: str | None = None,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        page_token: str | None = None,
        max_results: int = 50,
    ) -> CalendarPage:
        self.calls.append(
            {
                "user_id": user_id,
                "sync_token": sync_token,
                "time_min": time_min,
                "time_max": time_max,
                "page_token": page_token,
            }
        )
        if user_id in self.errors:
            raise self.errors[user_id]
        if sync_token and sync_token in self.invalid_tokens:
            raise SyncTokenInvalidError()

        source = self.changes if sync_token else self.events
        start = int(page_token or 0)
        end = start + max_results
        chunk = source[start:end]
        if end < len(source):
            return CalendarPage(events=chunk, next_page_token=str(end))
        self._token_seq += 1
        return CalendarPage(events=chunk, next_sync_token=f"sync-{self._token_seq}")


@pytest.fixture
def acme(deal_repo):
    """acme.com org, user bob, and a contact at partner.com on an opportunity."""
    deal_repo.add_organization("acme.com")
    bob = deal_repo.add_user("bob@acme.com")
    account = deal_repo.add_account("Partner", "partner.com")
    opp = deal_repo.add_opportunity("Partner Platform", account_id=account.id)
    deal_repo.add_contact("carol@partner.com", opportunity_id=opp.id)
    return {"user": bob, "account": account, "opportunity": opp}


def make_engine(client, calendar_repo, deal_repo, **kwargs) -> CalendarSyncEngine:
    return CalendarSyncEngine(
        calendar_client=client,
        calendar_repository=calendar_repo,
        deal_repository=deal_repo,
        **kwargs,
    )


# ── Full / Incremental ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_first_run_creates_state_and_full_syncs(calendar_repo, deal_repo, acme):
    user = acme["user"]
    client = FakeCalendarClient(
        [
            gevent("ext-1", ["bob@acme.com", "carol@partner.com"]),
            gevent("int-1", ["bob@acme.com", "alice@acme.com"]),
            gevent("ext-2", ["bob@acme.com", "zed@other.org"]),
        ]
    )
    engine = make_engine(client, calendar_repo, deal_repo, window_days=90, page_size=2)

    result = await engine.sync_user(user)

    assert result.status == SyncStatus.SUCCESS
    assert result.mode == SyncMode.FULL
    assert result.pages_fetched == 2
    assert result.events_created == 2
    assert result.events_skipped == 1

    state = await calendar_repo.get_sync_state(user.id)
    assert state.sync_token == "sync-1"
    assert state.last_sync_status == SyncStatus.SUCCESS
    assert state.last_sync_at is not None
    assert state.time_max - state.time_min == timedelta(days=180)

    first_call = client.calls[0]
    assert first_call["sync_token"] is None
    assert first_call["time_min"] == state.time_min
    assert first_call["time_max"] == state.time_max
    assert set(k[1] for k in calendar_repo.events) == {"ext-1", "ext-2"}


@pytest.mark.asyncio
async def test_end_to_end_external_event_is_stored_and_linked(calendar_repo, deal_repo, acme):
    user = acme["user"]
    client = FakeCalendarClient([gevent("evt", ["bob@acme.com", "carol@partner.com"])])
    engine = make_engine(client, calendar_repo, deal_repo)

    result = await engine.sync_user(user)

    stored = await calendar_repo.get_event(user.id, "evt")
    assert stored.is_external is True
    assert stored.opportunity_id == acme["opportunity"].id
    assert stored.account_id == acme["account"].id
    assert result.matched_by_contact == 1


@pytest.mark.asyncio
async def test_full_sync_twice_is_idempotent(calendar_repo, deal_repo, acme):
    user = acme["user"]
    client = FakeCalendarClient(
        [
            gevent("ext-1", ["bob@acme.com", "carol@partner.com"]),
            gevent("ext-2", ["bob@acme.com", "zed@other.org"]),
            gevent("int-1", ["bob@acme.com"]),
        ]
    )
    engine = make_engine(client, calendar_repo, deal_repo, page_size=2)

    await engine.sync_user(user)
    before = {
        key: (e.id, e.summary, e.is_external, e.opportunity_id, e.account_id)
        for key, e in calendar_repo.events.items()
    }

    # Drop the cursor so the second run is a full sync over the same window
    await calendar_repo.update_sync_state(user.id, SyncStateUpdate(sync_token=None))
    second = await engine.sync_user(user)

    after = {
        key: (e.id, e.summary, e.is_external, e.opportunity_id, e.account_id)
        for key, e in calendar_repo.events.items()
    }
    assert second.mode == SyncMode.FULL
    assert after == before
    assert len(calendar_repo.events) == 2
    assert second.events_created == 0
    assert second.events_updated == 2


@pytest.mark.asyncio
async def test_incremental_uses_cursor_not_window(calendar_repo, deal_repo, acme):
    user = acme["user"]
    client = FakeCalendarClient([gevent("ext-1", ["carol@partner.com"])])
    engine = make_engine(client, calendar_repo, deal_repo)
    await engine.sync_user(user)

    client.changes = [gevent("ext-3", ["bob@acme.com", "zed@other.org"])]
    result = await engine.sync_user(user)

    assert result.mode == SyncMode.INCREMENTAL
    last_call = client.calls[-1]
    assert last_call["sync_token"] == "sync-1"
    assert last_call["time_min"] is None
    assert last_call["time_max"] is None
    assert (await calendar_repo.get_sync_state(user.id)).sync_token == "sync-2"
    assert await calendar_repo.get_event(user.id, "ext-3") is not None


# ── Cursor Invalidation ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_invalidated_cursor_clears_and_runs_full_sync(calendar_repo, deal_repo, acme):
    user = acme["user"]
    client = FakeCalendarClient([gevent("ext-1", ["bob@acme.com", "carol@partner.com"])])
    engine = make_engine(client, calendar_repo, deal_repo)

    now = datetime.now(timezone.utc)
    await calendar_repo.create_sync_state(user.id, now - timedelta(days=90), now + timedelta(days=90))
    await calendar_repo.update_sync_state(user.id, SyncStateUpdate(sync_token="stale"))
    client.invalid_tokens.add("stale")

    result = await engine.sync_user(user)

    # (a) cursor cleared and invalidation recorded
    clearing = [
        u for u in calendar_repo.state_updates
        if "sync_token" in u.model_fields_set and u.sync_token is None
        and u.last_sync_status == SyncStatus.TOKEN_INVALIDATED
    ]
    assert len(clearing) == 1
    assert clearing[0].last_sync_error

    # (b) full sync in the same invocation
    assert [c["sync_token"] for c in client.calls] == ["stale", None]
    assert client.calls[1]["time_min"] is not None

    # (c) a new cursor persisted
    state = await calendar_repo.get_sync_state(user.id)
    assert state.sync_token == "sync-1"
    assert state.last_sync_status == SyncStatus.SUCCESS
    assert state.last_sync_error is None

    assert result.status == SyncStatus.SUCCESS
    assert result.mode == SyncMode.FULL
    assert result.token_invalidated is True
    assert await calendar_repo.get_event(user.id, "ext-1") is not None


# ── Reconciliation Rules ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_reconciliation_rules(calendar_repo, deal_repo, acme):
    user = acme["user"]
    seed = FakeCalendarClient(
        [
            gevent("was-ext", ["bob@acme.com", "carol@partner.com"]),
            gevent("to-cancel", ["bob@acme.com", "zed@other.org"]),
        ]
    )
    await make_engine(seed, calendar_repo, deal_repo).sync_user(user)
    assert len(calendar_repo.events) == 2

    client = FakeCalendarClient()
    client.changes = [
        gevent("to-cancel", [], status="cancelled"),      # 1: cancelled, stored -> delete
        gevent("never-stored", [], status="cancelled"),   # 1: cancelled, absent -> no-op
        gevent("new-int", ["bob@acme.com", "al@acme.com"]),  # 2: internal, absent -> skip
        gevent("was-ext", ["bob@acme.com", "al@acme.com"]),  # 3: internal, stored -> delete
        gevent("new-ext", ["bob@acme.com", "zed@other.org"]),  # 4: external -> upsert
    ]
    engine = make_engine(client, calendar_repo, deal_repo)

    result = await engine.sync_user(user)

    assert result.mode == SyncMode.INCREMENTAL

    assert set(k[1] for k in calendar_repo.events) == {"new-ext"}
    assert result.events_processed == 5
    assert result.events_deleted == 2
    assert result.events_skipped == 2
    assert result.events_created == 1
    assert (await calendar_repo.get_event(user.id, "new-ext")).is_external is True


@pytest.mark.asyncio
async def test_per_event_failure_does_not_abort_pass(calendar_repo, deal_repo, acme):
    user = acme["user"]
    calendar_repo.fail_upsert_for.add("bad")
    client = FakeCalendarClient(
        [
            gevent("bad", ["bob@acme.com", "carol@partner.com"]),
            gevent("good", ["bob@acme.com", "carol@partner.com"]),
        ]
    )

    result = await make_engine(client, calendar_repo, deal_repo).sync_user(user)

    assert result.status == SyncStatus.SUCCESS
    assert result.events_failed == 1
    assert result.events_created == 1
    assert await calendar_repo.get_event(user.id, "good") is not None
    assert (await calendar_repo.get_sync_state(user.id)).sync_token == "sync-1"


@pytest.mark.asyncio
async def test_max_pages_truncation_keeps_cursor_unset(calendar_repo, deal_repo, acme):
    user = acme["user"]
    client = FakeCalendarClient(
        [gevent(f"ext-{i}", ["carol@partner.com"]) for i in range(5)]
    )
    engine = make_engine(client, calendar_repo, deal_repo, page_size=1, max_pages=2)

    result = await engine.sync_user(user)

    assert result.status == SyncStatus.SUCCESS
    assert result.pages_fetched == 2
    state = await calendar_repo.get_sync_state(user.id)
    assert state.sync_token is None
    assert state.last_sync_status == SyncStatus.SUCCESS


@pytest.mark.asyncio
async def test_user_without_org_stores_nothing(calendar_repo, deal_repo):
    loner = deal_repo.add_user("solo@freelance.dev", org_id=None)
    client = FakeCalendarClient([gevent("e", ["solo@freelance.dev", "x@client.com"])])

    result = await make_engine(client, calendar_repo, deal_repo).sync_user(loner)

    assert result.status == SyncStatus.SUCCESS
    assert result.events_skipped == 1
    assert calendar_repo.events == {}


# ── Failures ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_api_failure_keeps_cursor_and_records_error(calendar_repo, deal_repo, acme):
    user = acme["user"]
    client = FakeCalendarClient([gevent("ext-1", ["carol@partner.com"])])
    engine = make_engine(client, calendar_repo, deal_repo)
    await engine.sync_user(user)

    client.errors[user.id] = CalendarAPIError("HTTP 500", status_code=500)
    result = await engine.sync_user(user)

    assert result.status == SyncStatus.FAILED
    assert result.mode == SyncMode.INCREMENTAL
    state = await calendar_repo.get_sync_state(user.id)
    assert state.sync_token == "sync-1"
    assert state.last_sync_status == SyncStatus.FAILED
    assert state.last_sync_error == "HTTP 500"


@pytest.mark.asyncio
async def test_batch_skips_user_with_invalid_token(calendar_repo, deal_repo, acme):
    bob = acme["user"]
    eve = deal_repo.add_user("eve@acme.com")
    client = FakeCalendarClient([gevent("ext-1", ["bob@acme.com", "carol@partner.com"])])
    client.errors[bob.id] = TokenInvalidError("Failed to refresh calendar access.")

    batch = await make_engine(client, calendar_repo, deal_repo).sync_all_users()

    assert batch.total_users == 2
    assert batch.successful == 1
    assert batch.failed == 1
    assert batch.errors[0].user_id == bob.id
    assert "refresh" in batch.errors[0].error

    bob_state = await calendar_repo.get_sync_state(bob.id)
    assert bob_state.last_sync_status == SyncStatus.FAILED
    assert bob_state.sync_token is None
    eve_state = await calendar_repo.get_sync_state(eve.id)
    assert eve_state.last_sync_status == SyncStatus.SUCCESS
    assert await calendar_repo.get_event(eve.id, "ext-1") is not None


@pytest.mark.asyncio
async def test_batch_with_no_connected_users(calendar_repo, deal_repo):
    batch = await make_engine(FakeCalendarClient(), calendar_repo, deal_repo).sync_all_users()
    assert batch.total_users == 0
    assert batch.errors == []


@pytest.mark.asyncio
async def test_infrastructure_errors_propagate(calendar_repo, deal_repo, acme):
    async def _db_down(*args, **kwargs):
        raise ConnectionError("database unavailable")

    calendar_repo.get_sync_state = _db_down
    engine = make_engine(FakeCalendarClient(), calendar_repo, deal_repo)

    with pytest.raises(ConnectionError):
        await engine.sync_all_users()


@pytest.mark.asyncio
async def test_sync_user_by_id_unknown_user(calendar_repo, deal_repo):
    engine = make_engine(FakeCalendarClient(), calendar_repo, deal_repo)
    with pytest.raises(LookupError):
        await engine.sync_user_by_id("00000000-0000-0000-0000-000000000000")
