"""Meeting insight module -- dedup across transcript sources and consolidation.

Provides models and schemas for parsed Gong calls and Granola notes, the
cross-source meeting deduplication, the LLM summarizer producing validated
ConsolidatedInsights, and InsightConsolidator driving a consolidation run.
"""
