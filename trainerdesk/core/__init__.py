"""
Core business logic for trainer plan accounting.

This module is framework-agnostic - it doesn't import FastAPI, Snowflake,
or any e-mail provider. Storage, delivery and the clock come in through
the protocols in billing.orchestrator, so the accounting rules can be
tested in isolation.
"""
