"""
Credential store: the "users" collection.

Lookups return the raw document or None; callers decide whether a missing
principal is fatal.
"""
import logging
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import database
from errors import ConflictError, duplicate_key_field
from schemas import User

logger = logging.getLogger(__name__)

PUBLIC_HIDDEN_FIELDS = ("password_hash",)


def find_by_id(user_id) -> Optional[dict]:
    oid = database.to_obj_id(user_id)
    if oid is None:
        return None
    return database.get_db()["users"].find_one({"_id": oid})


def find_by_phone(phone: str) -> Optional[dict]:
    return database.get_db()["users"].find_one({"phone": phone})


def find_by_email(email: str) -> Optional[dict]:
    return database.get_db()["users"].find_one({"email": str(email).lower()})


def find_by_phone_or_email(phone: Optional[str] = None, email: Optional[str] = None) -> Optional[dict]:
    clauses = []
    if phone:
        clauses.append({"phone": phone})
    if email:
        clauses.append({"email": str(email).lower()})
    if not clauses:
        return None
    return database.get_db()["users"].find_one({"$or": clauses})


def conflict_from(exc: DuplicateKeyError) -> ConflictError:
    field = duplicate_key_field(exc) or "email"
    return ConflictError(f"{field.capitalize()} already registered")


def create_user(user: User) -> str:
    if user.email:
        user.email = user.email.lower()
    try:
        return database.create_document("users", user)
    except DuplicateKeyError as exc:
        raise conflict_from(exc)


def update_user(user_id, fields: dict) -> Optional[dict]:
    """Apply a partial $set; None values are skipped."""
    changes = {k: v for k, v in fields.items() if v is not None}
    if "email" in changes:
        changes["email"] = str(changes["email"]).lower()
    changes["updated_at"] = database.now_utc()
    try:
        return database.get_db()["users"].find_one_and_update(
            {"_id": database.to_obj_id(user_id)},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError as exc:
        raise conflict_from(exc)


def grant_role(user_id, role: str) -> Optional[dict]:
    """Make `role` the active persona and add it to the granted set."""
    return database.get_db()["users"].find_one_and_update(
        {"_id": database.to_obj_id(user_id)},
        {"$set": {"role": role, "updated_at": database.now_utc()}, "$addToSet": {"roles": role}},
        return_document=ReturnDocument.AFTER,
    )


def soft_delete_user(user_id) -> Optional[dict]:
    return update_user(user_id, {"is_verified": False})


def delete_user(user_id) -> bool:
    """
    Hard delete of the principal with its bookmarks and codes.

    A vendor profile is not touched here; vendors.delete_account removes it
    first.
    """
    user = find_by_id(user_id)
    if not user:
        return False
    db = database.get_db()
    uid = str(user["_id"])
    db["saved_vendors"].delete_many({"user_id": uid})
    identifiers = [user["phone"]] + ([user["email"]] if user.get("email") else [])
    db["otps"].delete_many({"identifier": {"$in": identifiers}})
    db["users"].delete_one({"_id": user["_id"]})
    logger.info("Deleted user %s", uid)
    return True


def public_user(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    return {k: v for k, v in doc.items() if k not in PUBLIC_HIDDEN_FIELDS}
