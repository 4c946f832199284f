from fastapi import HTTPException, status, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from auth import get_current_user
from core.roles import Principal, Role
import logging

logger = logging.getLogger(__name__)


class PermissionChecker:
    """
    Turns a verified token into the principal the ledger works with.

    RULES:
    1. User must be authenticated
    2. User must exist in the users collection
    3. User must not be deactivated (active_status = FALSE)
    4. The stored role wins over whatever the token claims
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def get_authenticated_user(self, current_user: dict = Depends(get_current_user)) -> Principal:
        """Get and validate authenticated user"""
        user_id = current_user.get("user_id")

        user = await self.db.users.find_one({"_id": user_id})

        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"error": "UNAUTHORIZED", "message": "User not found"}
            )

        if user.get("active_status") is False:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "FORBIDDEN", "message": "User account is inactive"}
            )

        try:
            role = Role.parse(user.get("role"))
        except ValueError:
            logger.warning(f"[PERMISSIONS] User {user_id} has unknown role {user.get('role')!r}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "FORBIDDEN", "message": "User role is not allowed to use the ledger"}
            )

        return Principal(user_id=user["_id"], role=role)

