"""Tests for linking events to opportunities and accounts.

Contact-email matches outrank domain matches; domain matches link the
account and, when unambiguous (one opportunity or a title match), the
opportunity.
"""

from __future__ import annotations

import pytest

from src.tracker.calendar.matching import (
    NO_MATCH,
    UNMATCHED,
    MatchMaps,
    build_match_maps,
    match_by_contact_email,
    match_by_domain,
    match_event,
    website_domain,
)
from src.tracker.calendar.schemas import MatchSource


@pytest.mark.parametrize(
    "website, expected",
    [
        ("https://www.Partner.com/about", "partner.com"),
        ("partner.com", "partner.com"),
        ("http://app.partner.com:8080", "app.partner.com"),
        ("", None),
        ("   ", None),
        (None, None),
    ],
)
def test_website_domain(website, expected):
    assert website_domain(website) == expected


@pytest.fixture
def crm(deal_repo):
    """Partner account with two opportunities and one contact on each path."""
    partner = deal_repo.add_account("Partner", "https://www.partner.com")
    solo = deal_repo.add_account("Solo", "solo.io")
    expansion = deal_repo.add_opportunity("Analytics Expansion", account_id=partner.id)
    renewal = deal_repo.add_opportunity("Platform Renewal", account_id=partner.id)
    solo_deal = deal_repo.add_opportunity("Solo Pilot", account_id=solo.id)
    deal_repo.add_contact("carol@partner.com", opportunity_id=renewal.id)
    deal_repo.add_contact("dan@partner.com", account_id=partner.id)
    maps = build_match_maps(
        deal_repo.contacts, deal_repo.accounts, list(deal_repo.opportunities.values())
    )
    return {
        "maps": maps,
        "partner": partner,
        "solo": solo,
        "expansion": expansion,
        "renewal": renewal,
        "solo_deal": solo_deal,
    }


class TestContactEmail:
    def test_contact_opportunity_wins_with_its_account(self, crm):
        result = match_by_contact_email(["Carol@Partner.com"], "Weekly", crm["maps"])
        assert result.matched_by == MatchSource.CONTACT
        assert result.opportunity_id == crm["renewal"].id
        assert result.account_id == crm["partner"].id

    def test_contact_account_only(self, crm):
        result = match_by_contact_email(["dan@partner.com"], "Weekly", crm["maps"])
        assert result.opportunity_id is None
        assert result.account_id == crm["partner"].id

    def test_unknown_email_is_no_match(self, crm):
        assert match_by_contact_email(["zed@partner.com"], "", crm["maps"]) is NO_MATCH


class TestDomain:
    def test_single_opportunity_is_linked(self, crm):
        result = match_by_domain(["amy@solo.io"], "Kickoff", crm["maps"])
        assert result.matched_by == MatchSource.DOMAIN
        assert result.account_id == crm["solo"].id
        assert result.opportunity_id == crm["solo_deal"].id

    def test_several_opportunities_disambiguated_by_title(self, crm):
        result = match_by_domain(
            ["zed@partner.com"], "Partner | Analytics Expansion scoping", crm["maps"]
        )
        assert result.opportunity_id == crm["expansion"].id

    def test_title_contained_in_opportunity_name(self, crm):
        result = match_by_domain(["zed@partner.com"], "platform renewal", crm["maps"])
        assert result.opportunity_id == crm["renewal"].id

    def test_ambiguous_title_links_account_only(self, crm):
        result = match_by_domain(["zed@partner.com"], "Quarterly sync", crm["maps"])
        assert result.account_id == crm["partner"].id
        assert result.opportunity_id is None

    def test_unknown_domain_is_no_match(self, crm):
        assert match_by_domain(["x@elsewhere.com", "room-1"], "", crm["maps"]) is NO_MATCH


class TestMatchEvent:
    def test_contact_outranks_domain(self, crm):
        # amy@solo.io would domain-match Solo; carol is a known contact
        result = match_event(["amy@solo.io", "carol@partner.com"], "Kickoff", crm["maps"])
        assert result.matched_by == MatchSource.CONTACT
        assert result.opportunity_id == crm["renewal"].id

    def test_falls_back_to_domain(self, crm):
        result = match_event(["amy@solo.io"], "Kickoff", crm["maps"])
        assert result.matched_by == MatchSource.DOMAIN

    def test_no_match_leaves_fields_unset(self, crm):
        result = match_event(["x@elsewhere.com"], "Kickoff", crm["maps"])
        assert result == UNMATCHED
        assert result.opportunity_id is None
        assert result.account_id is None
        assert result.matched_by == MatchSource.NONE

    def test_empty_maps(self):
        assert match_event(["carol@partner.com"], "Kickoff", MatchMaps()) == UNMATCHED

    def test_custom_strategy_order(self, crm):
        result = match_event(
            ["amy@solo.io", "carol@partner.com"],
            "Kickoff",
            crm["maps"],
            strategies=[match_by_domain, match_by_contact_email],
        )
        assert result.matched_by == MatchSource.DOMAIN
