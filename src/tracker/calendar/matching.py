"""Automatic linking of calendar events to opportunities and accounts.

Lookup maps are built once per sync pass from the organization's contacts,
accounts, and opportunities. Each event is then run through an ordered list of
strategies; the first strategy that returns something other than NO_MATCH
decides the link.

1. Contact email: an attendee's email belongs to a known contact. The
   contact's opportunity wins (with that opportunity's account); failing
   that, the contact's account.
2. Domain: an attendee's email domain equals an account's website domain.
   The first such account is linked. With exactly one opportunity on it, that
   opportunity is linked too; with several, the event title is compared to
   opportunity names (containment either way, case-insensitive).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from urllib.parse import urlparse

import structlog

from src.tracker.calendar.classifier import email_domain, normalize_domain
from src.tracker.calendar.schemas import MatchSource
from src.tracker.deals.schemas import AccountRead, ContactRead, OpportunityRead

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one event.

    Attributes:
        opportunity_id: Linked opportunity, if any.
        account_id: Linked account, if any.
        matched_by: Strategy that produced the link.
    """

    opportunity_id: str | None = None
    account_id: str | None = None
    matched_by: MatchSource = MatchSource.NONE


class _NoMatch:
    """Sentinel type returned by a strategy that cannot decide."""

    _instance: _NoMatch | None = None

    def __new__(cls) -> _NoMatch:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_MATCH"


NO_MATCH = _NoMatch()

UNMATCHED = MatchResult()


@dataclass
class AccountCandidate:
    """Account reachable by website domain, with its opportunities."""

    id: str
    name: str
    opportunities: list[OpportunityRead] = field(default_factory=list)


@dataclass
class MatchMaps:
    """Precomputed lookup tables for one organization.

    Attributes:
        email_to_opportunity: Lowercased contact email -> opportunity id.
        email_to_account: Lowercased contact email -> account id.
        domain_to_accounts: Website domain -> accounts, in input order.
        opportunity_to_account: Opportunity id -> account id.
    """

    email_to_opportunity: dict[str, str] = field(default_factory=dict)
    email_to_account: dict[str, str] = field(default_factory=dict)
    domain_to_accounts: dict[str, list[AccountCandidate]] = field(default_factory=dict)
    opportunity_to_account: dict[str, str] = field(default_factory=dict)


# ── Map Building ─────────────────────────────────────────────────────────────


def website_domain(website: str | None) -> str | None:
    """Hostname of an account website, scheme optional, ``www.`` stripped.

    Returns None for blank or unparseable values.
    """
    if not website or not website.strip():
        return None
    website = website.strip()
    url = website if website.lower().startswith(("http://", "https://")) else f"https://{website}"
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return normalize_domain(hostname)


def build_match_maps(
    contacts: list[ContactRead],
    accounts: list[AccountRead],
    opportunities: list[OpportunityRead],
) -> MatchMaps:
    """Build the lookup tables used by the matching strategies."""
    maps = MatchMaps()

    for contact in contacts:
        if not contact.email:
            continue
        email = contact.email.strip().lower()
        if contact.opportunity_id:
            maps.email_to_opportunity[email] = contact.opportunity_id
        if contact.account_id:
            maps.email_to_account[email] = contact.account_id

    opportunities_by_account: dict[str, list[OpportunityRead]] = {}
    for opportunity in opportunities:
        if opportunity.account_id:
            maps.opportunity_to_account[opportunity.id] = opportunity.account_id
            opportunities_by_account.setdefault(opportunity.account_id, []).append(opportunity)

    for account in accounts:
        domain = website_domain(account.website)
        if domain is None:
            continue
        maps.domain_to_accounts.setdefault(domain, []).append(
            AccountCandidate(
                id=account.id,
                name=account.name,
                opportunities=opportunities_by_account.get(account.id, []),
            )
        )

    logger.debug(
        "calendar_matching.maps_built",
        contact_emails=len(maps.email_to_opportunity) + len(maps.email_to_account),
        domains=len(maps.domain_to_accounts),
    )
    return maps


# ── Strategies ───────────────────────────────────────────────────────────────

MatchStrategy = Callable[[list[str], str, MatchMaps], "MatchResult | _NoMatch"]


def match_by_contact_email(
    attendees: list[str], title: str, maps: MatchMaps
) -> MatchResult | _NoMatch:
    """Link via an attendee that is a known contact."""
    account_id: str | None = None
    for attendee in attendees:
        email = attendee.strip().lower()
        opportunity_id = maps.email_to_opportunity.get(email)
        if opportunity_id:
            return MatchResult(
                opportunity_id=opportunity_id,
                account_id=maps.opportunity_to_account.get(opportunity_id, account_id),
                matched_by=MatchSource.CONTACT,
            )
        if account_id is None:
            account_id = maps.email_to_account.get(email)

    if account_id is not None:
        return MatchResult(account_id=account_id, matched_by=MatchSource.CONTACT)
    return NO_MATCH


def _opportunity_for_title(
    opportunities: list[OpportunityRead], title: str
) -> OpportunityRead | None:
    if len(opportunities) == 1:
        return opportunities[0]
    title = title.strip().lower()
    if not title:
        return None
    for opportunity in opportunities:
        name = opportunity.name.strip().lower()
        if name and (name in title or title in name):
            return opportunity
    return None


def match_by_domain(
    attendees: list[str], title: str, maps: MatchMaps
) -> MatchResult | _NoMatch:
    """Link via an attendee domain equal to an account website domain."""
    for attendee in attendees:
        domain = email_domain(attendee)
        if domain is None:
            continue
        candidates = maps.domain_to_accounts.get(domain)
        if not candidates:
            continue

        account = candidates[0]
        opportunity = _opportunity_for_title(account.opportunities, title)
        return MatchResult(
            opportunity_id=opportunity.id if opportunity else None,
            account_id=account.id,
            matched_by=MatchSource.DOMAIN,
        )
    return NO_MATCH


MATCH_STRATEGIES: list[MatchStrategy] = [
    match_by_contact_email,
    match_by_domain,
]


def match_event(
    attendees: list[str],
    title: str,
    maps: MatchMaps,
    strategies: list[MatchStrategy] | None = None,
) -> MatchResult:
    """Run strategies in priority order; the first decisive one wins."""
    for strategy in strategies or MATCH_STRATEGIES:
        result = strategy(attendees, title, maps)
        if result is not NO_MATCH:
            return result
    return UNMATCHED
