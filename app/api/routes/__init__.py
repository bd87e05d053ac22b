"""
API routes.

This module organizes routes into:
- jobs: Job triggers (backfills, verification, odds, participants, edges) and the run ledger
- edges: Read surface for daily edges and their accuracy
"""
