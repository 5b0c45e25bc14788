"""
Account operations: registration, login, profile and password changes.

Passwords are hashed here and only here: the hash is computed when a user
is created and when the password is explicitly changed, and no other update
path touches ``password_hash``.
"""
import logging
from typing import Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from backend.database import (
    USER_COLLECTION,
    create_document,
    from_storage_datetime,
    parse_object_id,
    utcnow,
)
from backend.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from backend.security import PasswordHasher, TokenService
from schemas import User

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
PROFILE_FIELDS = ("name", "email", "bio", "avatar")
INVALID_CREDENTIALS = "Invalid email or password"
EMAIL_TAKEN = "An account with this email already exists"


def serialize_user(doc: dict) -> dict:
    """Public view of a user document; the password hash never leaves here."""
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "email": doc.get("email"),
        "avatar": doc.get("avatar", ""),
        "bio": doc.get("bio", ""),
        "createdAt": from_storage_datetime(doc.get("created_at")),
        "updatedAt": from_storage_datetime(doc.get("updated_at")),
    }


def _check_password_length(password: str, field: str = "password") -> None:
    if password is None or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            errors=[{
                "field": field,
                "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            }]
        )


class AccountService:
    def __init__(self, db: Database, hasher: PasswordHasher, tokens: TokenService):
        self.db = db
        self.hasher = hasher
        self.tokens = tokens

    @property
    def users(self):
        return self.db[USER_COLLECTION]

    def find_by_id(self, user_id: str, with_password: bool = False) -> Optional[dict]:
        oid = parse_object_id(user_id)
        if oid is None:
            return None
        projection = None if with_password else {"password_hash": 0}
        return self.users.find_one({"_id": oid}, projection)

    def find_by_email(self, email: str, with_password: bool = False) -> Optional[dict]:
        projection = None if with_password else {"password_hash": 0}
        return self.users.find_one({"email": email.strip().lower()}, projection)

    def register(self, name: str, email: str, password: str) -> Tuple[dict, str]:
        _check_password_length(password)
        try:
            user = User(name=name, email=email, password_hash="pending")
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e

        if self.find_by_email(user.email):
            raise ConflictError(EMAIL_TAKEN)

        user.password_hash = self.hasher.hash(password)
        try:
            user_id = create_document(self.db, USER_COLLECTION, user)
        except DuplicateKeyError as e:
            # Lost a race against a concurrent registration
            raise ConflictError(EMAIL_TAKEN) from e

        logger.info("Registered user %s", user_id)
        doc = self.find_by_id(user_id)
        return serialize_user(doc), self.tokens.issue(user_id)

    def login(self, email: str, password: str) -> Tuple[dict, str]:
        doc = self.find_by_email(email or "", with_password=True)
        if not doc or not self.hasher.verify(password or "", doc["password_hash"]):
            logger.info("Failed login attempt")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        user_id = str(doc["_id"])
        return serialize_user(doc), self.tokens.issue(user_id)

    def update_profile(self, user_id: str, fields: dict) -> dict:
        current = self.find_by_id(user_id, with_password=True)
        if not current:
            raise NotFoundError("User not found")

        updates = {k: v for k, v in fields.items() if k in PROFILE_FIELDS and v is not None}
        if not updates:
            return serialize_user(current)

        merged = {k: current.get(k) for k in ("name", "email", "password_hash")}
        merged.update({k: current.get(k) or "" for k in ("avatar", "bio")})
        merged.update(updates)
        try:
            validated = User(**merged)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e

        new_values = validated.model_dump(include=set(updates))
        if "email" in new_values and new_values["email"] != current["email"]:
            taken = self.users.find_one({"email": new_values["email"], "_id": {"$ne": current["_id"]}})
            if taken:
                raise ConflictError("This email is already in use")

        new_values["updated_at"] = utcnow()
        try:
            doc = self.users.find_one_and_update(
                {"_id": current["_id"]},
                {"$set": new_values},
                projection={"password_hash": 0},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as e:
            raise ConflictError("This email is already in use") from e
        return serialize_user(doc)

    def change_password(self, user_id: str, current_password: str, new_password: str) -> str:
        missing = [
            {"field": field, "message": f"Please provide {label} password"}
            for field, label, value in (
                ("currentPassword", "current", current_password),
                ("newPassword", "new", new_password),
            )
            if not value
        ]
        if missing:
            raise ValidationError(errors=missing)
        _check_password_length(new_password, field="newPassword")

        doc = self.find_by_id(user_id, with_password=True)
        if not doc:
            raise NotFoundError("User not found")
        if not self.hasher.verify(current_password, doc["password_hash"]):
            raise UnauthorizedError("Current password is incorrect")

        self.users.update_one(
            {"_id": doc["_id"]},
            {"$set": {"password_hash": self.hasher.hash(new_password), "updated_at": utcnow()}},
        )
        logger.info("Password changed for user %s", user_id)
        # Previously issued tokens stay valid until they expire
        return self.tokens.issue(user_id)
