"""Calendar sync module -- classification, matching, and incremental sync.

Provides the external/internal event classifier, contact/domain matching of
events to opportunities, CalendarRepository for sync state and mirrored
events, and CalendarSyncEngine implementing sync-token incremental sync with
full-sync recovery.
"""
