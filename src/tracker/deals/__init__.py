"""Deal records consumed by the sync core -- accounts, opportunities, contacts.

Provides SQLAlchemy models, Pydantic read schemas, and DealRepository for the
lookups needed by calendar matching and the opportunity consolidation status.
"""
