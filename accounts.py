"""
Accounts

User identity, bcrypt-hashed credentials, role and profile. Password hashes
never leave this module: public() strips them from every document.
"""

import re
from typing import Any, Dict, Optional

import bcrypt
import structlog
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import USERS, Store, serialize_doc, to_object_id, utcnow
from errors import Conflict, InvalidArgument, NotFound, Unauthenticated
from schemas import ProfileUpdate, RegisterRequest

logger = structlog.get_logger(__name__)

MIN_PASSWORD_LENGTH = 6
PROFILE_FIELDS = ("first_name", "last_name", "phone", "address")
PRIVATE_FIELDS = ("password",)


def public(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    return serialize_doc(user, exclude=PRIVATE_FIELDS)


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


class Accounts:
    def __init__(self, store: Store, bcrypt_rounds: int = 12):
        self.store = store
        self.bcrypt_rounds = bcrypt_rounds

    @property
    def users(self):
        return self.store[USERS]

    def register(self, data: RegisterRequest, role: str = "user") -> Dict[str, Any]:
        email = data.email.lower()
        if self.store.get_document(USERS, {"email": email}):
            raise Conflict("User already exists with this email")
        doc = {
            "first_name": data.first_name,
            "last_name": data.last_name,
            "email": email,
            "password": hash_password(data.password, self.bcrypt_rounds),
            "phone": data.phone,
            "address": None,
            "role": role,
            "is_active": True,
        }
        try:
            user_id = self.store.create_document(USERS, doc)
        except DuplicateKeyError:
            raise Conflict("User already exists with this email")
        logger.info("User registered", user_id=user_id, role=role)
        return self.get(user_id)

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self.store.get_document(USERS, {"email": email.lower()})
        if not user or not check_password(password, user["password"]):
            raise Unauthenticated("Invalid credentials")
        if not user.get("is_active", True):
            raise Unauthenticated("Account is deactivated.")
        self.users.update_one({"_id": user["_id"]}, {"$set": {"last_login": utcnow()}})
        return user

    def get(self, user_id: str) -> Dict[str, Any]:
        oid = to_object_id(user_id)
        user = self.store.get_document(USERS, {"_id": oid}) if oid else None
        if not user:
            raise NotFound("User not found")
        return user

    def list(self, page: int = 1, limit: int = 20, search: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if search:
            pattern = re.escape(search.strip())
            query["$or"] = [
                {"first_name": {"$regex": pattern, "$options": "i"}},
                {"last_name": {"$regex": pattern, "$options": "i"}},
                {"email": {"$regex": pattern, "$options": "i"}},
            ]
        docs, pagination = self.store.paginate(
            USERS, query, page, limit, [("created_at", DESCENDING), ("_id", ASCENDING)]
        )
        return {"users": [public(u) for u in docs], "pagination": pagination}

    def update_profile(self, user_id: str, data: ProfileUpdate) -> Dict[str, Any]:
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if k in PROFILE_FIELDS}
        changes["updated_at"] = utcnow()
        user = self.users.find_one_and_update(
            {"_id": to_object_id(user_id)}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if not user:
            raise NotFound("User not found")
        logger.info("Profile updated", user_id=user_id, fields=sorted(changes))
        return user

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        if not current_password or not new_password:
            raise InvalidArgument("Please provide current and new password")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise InvalidArgument(f"New password must be at least {MIN_PASSWORD_LENGTH} characters long")
        user = self.get(user_id)
        if not check_password(current_password, user["password"]):
            raise InvalidArgument("Current password is incorrect")
        self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"password": hash_password(new_password, self.bcrypt_rounds), "updated_at": utcnow()}},
        )
        logger.info("Password changed", user_id=user_id)

    def deactivate(self, user_id: str) -> None:
        result = self.users.update_one(
            {"_id": to_object_id(user_id)}, {"$set": {"is_active": False, "updated_at": utcnow()}}
        )
        if result.matched_count == 0:
            raise NotFound("User not found")
        logger.info("Account deactivated", user_id=user_id)
