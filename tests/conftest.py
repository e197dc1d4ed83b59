"""Shared fixtures: in-memory repository doubles and record factories.

No database or network is needed; every repository the services use is
replaced by an in-memory double exposing the same async interface.
"""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone

import pytest

from src.tracker.calendar.schemas import (
    CalendarEventRead,
    CalendarEventUpsert,
    SyncStateRead,
    SyncStateUpdate,
)
from src.tracker.deals.schemas import (
    AccountRead,
    ConsolidationStatus,
    ContactRead,
    OpportunityRead,
    OrganizationRead,
    UserRead,
)
from src.tracker.insights.schemas import (
    ConsolidatedInsights,
    ConsolidatedInsightsRead,
    ParsedInsightPayload,
    ParsedMeetingInsight,
    ParsingStatus,
    TranscriptSource,
)

ORG_ID = str(uuid.uuid4())


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryDealRepository:
    """In-memory DealRepository for testing without database."""

    def __init__(self) -> None:
        self.organizations: dict[str, OrganizationRead] = {}
        self.users: dict[str, UserRead] = {}
        self.oauth_user_ids: list[str] = []
        self.contacts: list[ContactRead] = []
        self.accounts: list[AccountRead] = []
        self.opportunities: dict[str, OpportunityRead] = {}
        self.status_history: list[tuple[str, ConsolidationStatus]] = []

    def add_organization(self, domain: str | None, org_id: str = ORG_ID) -> OrganizationRead:
        org = OrganizationRead(id=org_id, name="Acme", domain=domain)
        self.organizations[org_id] = org
        return org

    def add_user(
        self, email: str, org_id: str | None = ORG_ID, with_oauth: bool = True
    ) -> UserRead:
        org = self.organizations.get(org_id) if org_id else None
        user = UserRead(
            id=str(uuid.uuid4()),
            email=email,
            organization_id=org_id,
            organization_domain=org.domain if org else None,
        )
        self.users[user.id] = user
        if with_oauth:
            self.oauth_user_ids.append(user.id)
        return user

    def add_opportunity(
        self, name: str, account_id: str | None = None, org_id: str = ORG_ID
    ) -> OpportunityRead:
        opp = OpportunityRead(
            id=str(uuid.uuid4()),
            organization_id=org_id,
            account_id=account_id,
            name=name,
        )
        self.opportunities[opp.id] = opp
        return opp

    def add_account(self, name: str, website: str | None, org_id: str = ORG_ID) -> AccountRead:
        account = AccountRead(
            id=str(uuid.uuid4()), organization_id=org_id, name=name, website=website
        )
        self.accounts.append(account)
        return account

    def add_contact(
        self,
        email: str,
        opportunity_id: str | None = None,
        account_id: str | None = None,
        org_id: str = ORG_ID,
    ) -> ContactRead:
        contact = ContactRead(
            id=str(uuid.uuid4()),
            organization_id=org_id,
            opportunity_id=opportunity_id,
            account_id=account_id,
            name=email.split("@")[0],
            email=email,
        )
        self.contacts.append(contact)
        return contact

    async def get_organization(self, organization_id: str) -> OrganizationRead | None:
        return self.organizations.get(organization_id)

    async def get_user(self, user_id: str) -> UserRead | None:
        return self.users.get(user_id)

    async def list_users_with_oauth(self, provider: str = "google") -> list[UserRead]:
        return [self.users[uid] for uid in self.oauth_user_ids]

    async def list_users_in_organization(self, organization_id: str) -> list[UserRead]:
        return [u for u in self.users.values() if u.organization_id == organization_id]

    async def list_contacts_with_email(self, organization_id: str) -> list[ContactRead]:
        return [
            c for c in self.contacts if c.organization_id == organization_id and c.email
        ]

    async def list_accounts(self, organization_id: str) -> list[AccountRead]:
        return [a for a in self.accounts if a.organization_id == organization_id]

    async def list_opportunities(self, organization_id: str) -> list[OpportunityRead]:
        return [o for o in self.opportunities.values() if o.organization_id == organization_id]

    async def get_opportunity(self, opportunity_id: str) -> OpportunityRead | None:
        return self.opportunities.get(opportunity_id)

    async def set_consolidation_status(
        self, opportunity_id: str, status: ConsolidationStatus
    ) -> OpportunityRead:
        opp = self.opportunities.get(opportunity_id)
        if opp is None:
            raise ValueError(f"Opportunity not found: {opportunity_id}")
        updated = opp.model_copy(update={"consolidation_status": status})
        self.opportunities[opportunity_id] = updated
        self.status_history.append((opportunity_id, status))
        return updated


class InMemoryCalendarRepository:
    """In-memory CalendarRepository keyed like the real unique constraints."""

    def __init__(self) -> None:
        self.states: dict[tuple[str, str], SyncStateRead] = {}
        self.events: dict[tuple[str, str], CalendarEventRead] = {}
        self.state_updates: list[SyncStateUpdate] = []
        self.fail_upsert_for: set[str] = set()

    async def get_sync_state(self, user_id: str, provider: str = "google") -> SyncStateRead | None:
        return self.states.get((user_id, provider))

    async def create_sync_state(
        self,
        user_id: str,
        time_min: datetime,
        time_max: datetime,
        provider: str = "google",
    ) -> SyncStateRead:
        state = SyncStateRead(
            id=str(uuid.uuid4()),
            user_id=user_id,
            provider=provider,
            time_min=time_min,
            time_max=time_max,
        )
        self.states[(user_id, provider)] = state
        return state

    async def update_sync_state(
        self, user_id: str, data: SyncStateUpdate, provider: str = "google"
    ) -> SyncStateRead:
        state = self.states.get((user_id, provider))
        if state is None:
            raise ValueError(f"Sync state not found: user={user_id}, provider={provider}")
        self.state_updates.append(data)
        updated = state.model_copy(update=data.model_dump(exclude_unset=True))
        self.states[(user_id, provider)] = updated
        return updated

    async def get_event(self, user_id: str, google_event_id: str) -> CalendarEventRead | None:
        return self.events.get((user_id, google_event_id))

    async def upsert_event(self, user_id: str, data: CalendarEventUpsert) -> CalendarEventRead:
        if data.google_event_id in self.fail_upsert_for:
            raise RuntimeError(f"upsert failed for {data.google_event_id}")
        key = (user_id, data.google_event_id)
        existing = self.events.get(key)
        now = datetime.now(timezone.utc)
        event = CalendarEventRead(
            id=existing.id if existing else str(uuid.uuid4()),
            user_id=user_id,
            created_at=existing.created_at if existing else now,
            updated_at=now,
            **data.model_dump(),
        )
        self.events[key] = event
        return event

    async def delete_event(self, user_id: str, google_event_id: str) -> bool:
        return self.events.pop((user_id, google_event_id), None) is not None

    async def list_events(
        self,
        user_id: str,
        external_only: bool = False,
        opportunity_id: str | None = None,
        limit: int = 200,
    ) -> list[CalendarEventRead]:
        events = [e for (uid, _), e in self.events.items() if uid == user_id]
        if external_only:
            events = [e for e in events if e.is_external]
        if opportunity_id:
            events = [e for e in events if e.opportunity_id == opportunity_id]
        events.sort(key=lambda e: e.start_time, reverse=True)
        return events[:limit]

    async def list_events_for_users(self, user_ids: list[str]) -> list[CalendarEventRead]:
        return [e for (uid, _), e in self.events.items() if uid in user_ids]

    async def set_event_external(self, event_id: str, is_external: bool) -> None:
        for key, event in self.events.items():
            if event.id == event_id:
                self.events[key] = event.model_copy(update={"is_external": is_external})
                return
        raise ValueError(f"Calendar event not found: id={event_id}")


class InMemoryInsightRepository:
    """In-memory InsightRepository holding both transcript sources."""

    def __init__(self) -> None:
        self.records: dict[str, ParsedMeetingInsight] = {}
        self.snapshots: dict[str, ConsolidatedInsightsRead] = {}
        self.replace_calls = 0

    def add_record(self, record: ParsedMeetingInsight) -> ParsedMeetingInsight:
        self.records[record.id] = record
        return record

    async def list_parsed_meetings(
        self, opportunity_id: str, source: TranscriptSource
    ) -> list[ParsedMeetingInsight]:
        return [
            r
            for r in self.records.values()
            if r.opportunity_id == opportunity_id
            and r.source == source
            and r.parsing_status == ParsingStatus.COMPLETED
            and r.parsed_at is not None
        ]

    async def mark_parsed(
        self,
        source: TranscriptSource,
        record_id: str,
        opportunity_id: str,
        payload: ParsedInsightPayload,
    ) -> ParsedMeetingInsight:
        record = self.records.get(record_id)
        if record is None or record.opportunity_id != opportunity_id or record.source != source:
            raise ValueError(
                f"{source.value} record not found: id={record_id}, opportunity={opportunity_id}"
            )
        updated = record.model_copy(
            update={
                "pain_points": payload.pain_points,
                "goals": payload.goals,
                "risk_assessment": payload.risk_assessment,
                "parsing_status": ParsingStatus.COMPLETED,
                "parsed_at": datetime.now(timezone.utc),
            }
        )
        self.records[record_id] = updated
        return updated

    async def get_snapshot(self, opportunity_id: str) -> ConsolidatedInsightsRead | None:
        return self.snapshots.get(opportunity_id)

    async def replace_snapshot(
        self, opportunity_id: str, insights: ConsolidatedInsights, meeting_count: int
    ) -> ConsolidatedInsightsRead:
        self.replace_calls += 1
        snapshot = ConsolidatedInsightsRead(
            opportunity_id=opportunity_id,
            insights=insights,
            meeting_count=meeting_count,
            consolidated_at=datetime.now(timezone.utc),
        )
        self.snapshots[opportunity_id] = snapshot
        return snapshot


# ── Factories ────────────────────────────────────────────────────────────────


def _make_meeting(
    source: TranscriptSource,
    meeting_date: datetime,
    opportunity_id: str = "opp-1",
    calendar_event_id: str | None = None,
    title: str = "Discovery call",
    parsed: bool = True,
) -> ParsedMeetingInsight:
    """Build a parsed meeting record."""
    return ParsedMeetingInsight(
        id=str(uuid.uuid4()),
        source=source,
        opportunity_id=opportunity_id,
        title=title,
        meeting_date=meeting_date,
        calendar_event_id=calendar_event_id,
        parsing_status=ParsingStatus.COMPLETED if parsed else ParsingStatus.PENDING,
        parsed_at=meeting_date if parsed else None,
        pain_points=["Manual reporting takes days"],
        goals=["Close books in 3 days"],
        risk_assessment={"riskLevel": "medium", "riskFactors": [], "overallSummary": "ok"},
    )


VALID_INSIGHTS_JSON = {
    "painPoints": ["Manual reporting takes days"],
    "goals": ["Close books in 3 days"],
    "riskAssessment": {
        "riskLevel": "medium",
        "riskFactors": [
            {
                "category": "budget",
                "description": "Budget not yet approved",
                "severity": "high",
                "evidence": "CFO sign-off pending",
            }
        ],
        "overallSummary": "Strong fit; budget approval is the open item.",
    },
    "whyAndWhyNow": ["Audit in Q3"],
    "quantifiableMetrics": ["40 hours/month on reconciliation"],
    "keyQuotes": ["We cannot do another quarter like this"],
    "objections": [],
}


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def deal_repo() -> InMemoryDealRepository:
    return InMemoryDealRepository()


@pytest.fixture
def calendar_repo() -> InMemoryCalendarRepository:
    return InMemoryCalendarRepository()


@pytest.fixture
def insight_repo() -> InMemoryInsightRepository:
    return InMemoryInsightRepository()



@pytest.fixture
def org_id() -> str:
    return ORG_ID


@pytest.fixture
def make_meeting():
    """Factory for parsed meeting records."""
    return _make_meeting


@pytest.fixture
def valid_insights_json() -> dict:
    """A summarization response that validates as ConsolidatedInsights."""
    return copy.deepcopy(VALID_INSIGHTS_JSON)
