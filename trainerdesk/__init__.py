"""
TrainerDesk - plan accounting and reminders for personal trainers.

This package contains the complete application:
- core: Framework-agnostic accounting logic
- infrastructure: Snowflake persistence, Brevo e-mail, system clock
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
