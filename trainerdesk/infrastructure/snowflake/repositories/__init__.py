"""
Repository pattern implementations for Snowflake.

Repositories translate between domain models and database representations.
"""

from .accounts import AccountRepository, SnowflakeConfig

__all__ = ["AccountRepository", "SnowflakeConfig"]
