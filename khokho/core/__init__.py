"""Match-session primitives (clock, ledger, batch rotation, substitutions, projections).

Kept free of FastAPI and Redis concerns so it can be reused by API routes, runners, and tests.
"""
