"""
Services for the H2H edge sync API.

- sync: provider adapters, matchers, identity registry, ingestion and reconciliation jobs
- edges: percentile statistics and daily edge computation
"""
