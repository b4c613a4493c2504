"""
FastAPI dependencies for authentication, authorization and services.

This module resolves the acting user from a JWT bearer token, provides
role-based access checks, and builds the fulfillment services on the
request's database session.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger, set_actor_id
from src.core.security import TokenError, get_token_user_id
from src.database.connection import get_db
from src.database.models.user import User, UserRole
from src.services.delivery_items.service import DeliveryItemService
from src.services.fulfillment.recovery import FulfillmentRecoveryService
from src.services.orders.service import OrderService
from src.services.payments.receipt_storage import ReceiptStorage
from src.services.payments.service import PaymentService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: DatabaseSession,
) -> User:
    """
    Validate the bearer token and load the acting user.

    Raises:
        HTTPException: 401 if the token is missing, invalid or names no user,
            403 if the account is inactive
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        user_id = get_token_user_id(credentials.credentials)
    except TokenError as e:
        logger.warning(
            "Authentication failed: Invalid token",
            error=str(e),
            code=e.code,
        )
        raise credentials_exception

    try:
        user = await db.get(User, user_id)
    except SQLAlchemyError as e:
        logger.error(
            "Database error during user retrieval",
            user_id=str(user_id),
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

    if user is None:
        logger.warning("Authentication failed: User not found", user_id=str(user_id))
        raise credentials_exception

    if not user.is_active:
        logger.warning("Authentication failed: User account is inactive", user_id=str(user.id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account",
        )

    set_actor_id(str(user.id))
    return user


def require_role(*allowed_roles: UserRole):
    """
    Create a dependency that requires specific user roles.

    Example:
        @router.post("/retry", dependencies=[Depends(require_role(UserRole.ADMIN))])
        async def retry():
            ...
    """

    async def role_checker(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role not in allowed_roles:
            logger.warning(
                "Access denied: Insufficient permissions",
                user_id=str(current_user.id),
                user_role=current_user.role.value,
                required_roles=[role.value for role in allowed_roles],
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return role_checker


def get_receipt_storage() -> ReceiptStorage:
    return ReceiptStorage()


def get_payment_service(
    db: DatabaseSession,
    receipt_storage: Annotated[ReceiptStorage, Depends(get_receipt_storage)],
) -> PaymentService:
    return PaymentService(db, receipt_storage=receipt_storage)


def get_delivery_item_service(db: DatabaseSession) -> DeliveryItemService:
    return DeliveryItemService(db)


def get_order_service(db: DatabaseSession) -> OrderService:
    return OrderService(db)


def get_recovery_service(db: DatabaseSession) -> FulfillmentRecoveryService:
    return FulfillmentRecoveryService(db)


CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentAdmin = Annotated[User, Depends(require_role(UserRole.ADMIN))]
ReceiptStorageDep = Annotated[ReceiptStorage, Depends(get_receipt_storage)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
DeliveryItemServiceDep = Annotated[DeliveryItemService, Depends(get_delivery_item_service)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
RecoveryServiceDep = Annotated[FulfillmentRecoveryService, Depends(get_recovery_service)]
