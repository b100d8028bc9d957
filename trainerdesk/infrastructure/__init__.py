"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- snowflake: Database persistence
- email: Transactional e-mail (Brevo)

clock provides the system time. These wrappers translate between external
formats and our domain models.
"""
