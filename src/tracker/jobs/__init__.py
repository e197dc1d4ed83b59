"""Background job module -- interval loops and event-triggered jobs.

Provides JobRegistry (retry envelope, asyncio loops, event dispatch) and
build_job_registry wiring the calendar sync and insight consolidation jobs.
"""
