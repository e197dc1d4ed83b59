"""ORM model registry.

Importing this package registers every tracker table on ``Base.metadata``
(used by ``init_db()`` and Alembic autogenerate).
"""

from src.tracker.calendar.models import CalendarEventModel, CalendarSyncStateModel
from src.tracker.deals.models import AccountModel, ContactModel, OpportunityModel
from src.tracker.insights.models import (
    ConsolidatedInsightsModel,
    GongCallModel,
    GranolaNoteModel,
)
from src.tracker.models.organization import OAuthToken, Organization, User

__all__ = [
    "AccountModel",
    "CalendarEventModel",
    "CalendarSyncStateModel",
    "ConsolidatedInsightsModel",
    "ContactModel",
    "GongCallModel",
    "GranolaNoteModel",
    "OAuthToken",
    "OpportunityModel",
    "Organization",
    "User",
]
