"""
Data sync service.

Key components:
- Utils: name normalization, alias resolution, lookup tables, confidence scoring
- Matchers: attach odds events to games and participant names to teams
- Adapters: fetch and validate payloads from the game, odds and scoreboard feeds
- Identity registry, ingestion engine, score verifier and job ledger
- Orchestrator: job entry points for routes and the scheduler
"""
