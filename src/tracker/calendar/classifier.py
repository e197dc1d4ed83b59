"""External/internal classification of calendar events by email domain.

An event is external when at least one attendee other than the acting user
has an email domain that is neither the organization's domain nor one of its
subdomains. Without an organization domain, or without any other attendee,
an event is internal: nothing is flagged external without evidence.
"""

from __future__ import annotations


def normalize_domain(domain: str) -> str:
    """Lowercase and strip surrounding whitespace and a leading ``www.``."""
    domain = domain.strip().lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def email_domain(email: str) -> str | None:
    """Normalized domain after ``@``, or None when the address has none."""
    _, sep, domain = email.rpartition("@")
    if not sep or not domain.strip():
        return None
    return normalize_domain(domain)


def is_internal_domain(domain: str, organization_domain: str) -> bool:
    """True for the organization domain itself or any of its subdomains.

    ``sales.acme.com`` is internal to ``acme.com``; ``acme.company.com`` is not.
    """
    return domain == organization_domain or domain.endswith("." + organization_domain)


def is_external_event(
    attendees: list[str],
    organization_domain: str | None,
    user_email: str | None = None,
) -> bool:
    """Decide whether an event involves anyone outside the organization.

    Args:
        attendees: Attendee email addresses.
        organization_domain: The organization's email domain (may be unset).
        user_email: The acting user's email, removed before classification.

    Returns:
        True if any remaining attendee is outside the organization domain.
    """
    if not organization_domain:
        return False
    org_domain = normalize_domain(organization_domain)
    if not org_domain:
        return False

    own_email = user_email.strip().lower() if user_email else None
    others = [a for a in attendees if a and a.strip().lower() != own_email]
    if not others:
        return False

    for attendee in others:
        domain = email_domain(attendee)
        if domain is None:
            continue
        if not is_internal_domain(domain, org_domain):
            return True
    return False
