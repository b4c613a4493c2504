"""
Database package initialization.

This module serves as the entry point for the database package, providing
a clean namespace for database-related functionality including models,
connections, and utilities.

The package follows a modular structure:
- base: Declarative base, column serialization and shared mixins
- connection: Engine, sessions and the transaction boundary
- models: SQLAlchemy ORM models for the fulfillment tables
"""

# Database package initialization - intentionally minimal
# All exports are handled by submodules to maintain clean separation of concerns
# Import submodules explicitly when needed to avoid circular dependencies

__all__ = []