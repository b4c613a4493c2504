"""
SQLAlchemy declarative base and common model mixins.

This module provides the SQLAlchemy DeclarativeBase, mixins for UUID primary
keys and timestamps, and a JSON-friendly ``to_dict`` used when records are
returned from the fulfillment services.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


def serialize_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, enum.Enum):
        return value.value
    return value


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models with async support.

    Provides async attribute loading and a column-level ``to_dict``.
    """

    __abstract__ = True

    def to_dict(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        """
        Convert model instance to a JSON-compatible dictionary.

        Args:
            exclude: Set of attribute names to exclude from output

        Returns:
            Dictionary keyed by column name
        """
        exclude = exclude or set()
        return {
            column.key: serialize_value(getattr(self, column.key))
            for column in self.__table__.columns
            if column.key not in exclude
        }

    def __repr__(self) -> str:
        pk_values = []
        for column in self.__table__.primary_key.columns:
            value = getattr(self, column.key, None)
            if value is not None:
                pk_values.append(f"{column.key}={value!r}")

        pk_str = ", ".join(pk_values) if pk_values else "no primary key"
        return f"<{self.__class__.__name__}({pk_str})>"


class TimestampMixin:
    """
    Mixin for automatic timestamp management.

    Adds created_at and updated_at columns maintained by the database.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
            comment="Timestamp when record was last updated",
        )


class UUIDMixin:
    """
    Mixin for UUID primary key.

    Uses PostgreSQL's native UUID type, generated client side with uuid4 so
    ids are known before flush.
    """

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            UUID(as_uuid=True),
            primary_key=True,
            default=uuid.uuid4,
            nullable=False,
            comment="Unique identifier for the record",
        )


class BaseModel(Base, UUIDMixin, TimestampMixin):
    """
    Base model with UUID primary key and timestamps.

    Example:
        class Product(BaseModel):
            __tablename__ = "products"

            name: Mapped[str] = mapped_column(String(255))
    """

    __abstract__ = True
    __mapper_args__ = {"eager_defaults": True}
