"""
User model with role and seller ownership.

Customers may be onboarded by a seller; the ``created_by`` self-reference
records that ownership and scopes what a seller may see and pay for.
"""

import enum
import uuid
from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import BaseModel


class UserRole(str, enum.Enum):
    """User role enumeration for role-based access control."""

    CUSTOMER = "customer"
    SELLER = "seller"
    DELIVERY_MANAGER = "delivery_manager"
    ADMIN = "admin"

    @property
    def is_staff(self) -> bool:
        """Roles allowed to act on any customer's delivery items."""
        return self in (UserRole.ADMIN, UserRole.DELIVERY_MANAGER)


class User(BaseModel):
    """
    Application user.

    Attributes:
        id: Unique user identifier (UUID)
        email: Login email
        full_name: Display name
        phone: Contact phone number
        role: Role used for authorization decisions
        is_active: Whether the account may act
        created_by: Seller who onboarded this customer, if any
    """

    __tablename__ = "users"

    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Login email",
    )

    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Display name",
    )

    phone: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="Contact phone number",
    )

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(
            UserRole,
            name="user_role",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=UserRole.CUSTOMER,
        comment="User role",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the account may act",
    )

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Seller who onboarded this customer",
    )

    seller: Mapped[Optional["User"]] = relationship(
        "User",
        remote_side="User.id",
        foreign_keys=[created_by],
        back_populates="customers",
    )

    customers: Mapped[list["User"]] = relationship(
        "User",
        foreign_keys=[created_by],
        back_populates="seller",
    )

    __table_args__ = (
        Index("ix_users_role", "role"),
        {"comment": "Customers, sellers and staff"},
    )

    def can_act_for(self, owner: "User") -> bool:
        """
        Check whether this user may act on resources owned by ``owner``.

        A user acts for themselves; a seller acts for the customers they
        onboarded; admins act for anyone.
        """
        if self.id == owner.id or self.role == UserRole.ADMIN:
            return True
        return self.role == UserRole.SELLER and owner.created_by == self.id
