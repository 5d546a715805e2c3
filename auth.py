"""
Access control

Stateless bearer tokens: a signed JWT carries the user id and an expiry.
authenticate() resolves a token to an active user; authorize() gates roles.
"""

from datetime import timedelta
from typing import Any, Dict

import jwt
import structlog

from database import USERS, Store, to_object_id, utcnow
from errors import Forbidden, Unauthenticated

logger = structlog.get_logger(__name__)

ALGORITHM = "HS256"


class AccessControl:
    def __init__(self, store: Store, secret: str, expire_days: int = 7):
        self.store = store
        self.secret = secret
        self.expire_days = expire_days

    def issue(self, user: Dict[str, Any]) -> str:
        payload = {
            "id": str(user["_id"]),
            "exp": utcnow() + timedelta(days=self.expire_days),
        }
        return jwt.encode(payload, self.secret, algorithm=ALGORITHM)

    def authenticate(self, token: str) -> Dict[str, Any]:
        if not token:
            raise Unauthenticated()
        try:
            claims = jwt.decode(token, self.secret, algorithms=[ALGORITHM], options={"require": ["exp", "id"]})
        except jwt.InvalidTokenError as e:
            logger.info("Rejected bearer token", reason=str(e))
            raise Unauthenticated("Token is invalid.")

        oid = to_object_id(claims.get("id"))
        user = self.store.get_document(USERS, {"_id": oid}) if oid else None
        if not user:
            raise Unauthenticated("Token is invalid. User not found.")
        if not user.get("is_active", True):
            raise Unauthenticated("Account is deactivated.")
        return user

    @staticmethod
    def authorize(user: Dict[str, Any], *roles: str) -> Dict[str, Any]:
        if user.get("role") not in roles:
            raise Forbidden(f"Role {user.get('role')} is not authorized to access this route")
        return user
