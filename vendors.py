"""
Vendor profiles and everything a profile owns (packages, gallery items),
plus the users' saved-vendor bookmarks.

Every mutation of an owned item is scoped to the caller's own profile: an id
that belongs to another vendor is reported exactly like an unknown id.
"""
import logging
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import database
import security
import users
from errors import NotFoundError
from schemas import RegisterVendorRequest, SavedVendor, VendorGallery, VendorPackage, VendorProfile, VendorProfileRequest

logger = logging.getLogger(__name__)

USER_FIELDS = {"first_name", "last_name", "email"}
PLACEHOLDER_BUSINESS_NAME = "My Business"
META_FIELDS = ("_id", "created_at", "updated_at")


def _strip_meta(doc: dict) -> dict:
    return {k: v for k, v in doc.items() if k not in META_FIELDS}


def _with_children(profile: dict) -> dict:
    vendor_id = str(profile["_id"])
    profile["packages"] = database.get_documents("vendor_packages", {"vendor_id": vendor_id}, sort=[("created_at", 1)])
    profile["gallery"] = database.get_documents("vendor_gallery", {"vendor_id": vendor_id}, sort=[("created_at", -1)])
    return profile


def owner_summary(owner: dict) -> dict:
    return {
        "_id": owner["_id"],
        "first_name": owner.get("first_name"),
        "last_name": owner.get("last_name"),
        "city": owner.get("city"),
        "is_verified": owner.get("is_verified", False),
    }


def find_profile(user: dict) -> Optional[dict]:
    return database.get_db()["vendor_profiles"].find_one({"user_id": str(user["_id"])})


def get_profile(user: dict) -> Optional[dict]:
    profile = find_profile(user)
    return _with_children(profile) if profile else None


def require_profile(user: dict) -> dict:
    profile = find_profile(user)
    if not profile:
        raise NotFoundError("Vendor profile not found")
    return profile


def registration_profile(user_id: str, body: RegisterVendorRequest) -> VendorProfile:
    """Profile document created together with a self-registered vendor."""
    fields = body.model_dump(exclude={"email", "password", "phone", "first_name", "last_name"}, exclude_none=True)
    fields["business_name"] = fields.get("business_name") or PLACEHOLDER_BUSINESS_NAME
    fields["business_type"] = fields.get("business_type") or "individual"
    fields.setdefault("acquisition_channels", [])
    fields.setdefault("service_categories", [])
    return VendorProfile(user_id=user_id, **fields)


def _upsert_profile(user_id: str, fields: dict) -> bool:
    """Create the caller's profile or update it. Returns True on create."""
    profiles = database.get_db()["vendor_profiles"]
    if profiles.find_one({"user_id": user_id}, {"_id": 1}) is None:
        try:
            database.create_document("vendor_profiles", VendorProfile(user_id=user_id, **fields))
            return True
        except DuplicateKeyError:
            # lost the race against a concurrent create for the same user
            logger.info("Profile for %s created concurrently, updating instead", user_id)
    if fields:
        profiles.update_one({"user_id": user_id}, {"$set": {**fields, "updated_at": database.now_utc()}})
    return False


def create_or_update_profile(user: dict, body: VendorProfileRequest) -> dict:
    """
    Upsert the caller's vendor profile.

    Principal-level fields (first name, last name, email) are written to the
    user first. A caller whose active persona is not yet vendor is promoted
    and receives a fresh token, since the role claim in the old one is stale.
    """
    user_id = str(user["_id"])

    user_fields = body.model_dump(include=USER_FIELDS, exclude_none=True)
    if user_fields:
        users.update_user(user_id, user_fields)

    # an explicit null clears an optional field; fields with a non-null default are left alone
    raw = body.model_dump(exclude_unset=True, exclude=USER_FIELDS)
    profile_fields = {
        k: v for k, v in raw.items() if v is not None or VendorProfile.model_fields[k].default is None
    }
    created = _upsert_profile(user_id, profile_fields)

    current = users.find_by_id(user_id)
    if not current:
        raise NotFoundError("User not found")

    access_token = None
    if current.get("role") != "vendor":
        current = users.grant_role(user_id, "vendor")
        access_token = security.generate_token(current)
        logger.info("Promoted user %s to vendor", user_id)

    profile = get_profile(current)
    return {**profile, "created": created, "access_token": access_token, "user": users.public_user(current)}


def update_profile(user: dict, fields: dict) -> dict:
    profile = require_profile(user)
    database.get_db()["vendor_profiles"].update_one(
        {"_id": profile["_id"]},
        {"$set": {**fields, "updated_at": database.now_utc()}},
    )
    return get_profile(user)


def delete_profile(user: dict) -> bool:
    profile = find_profile(user)
    if not profile:
        return False
    db = database.get_db()
    vendor_id = str(profile["_id"])
    db["vendor_packages"].delete_many({"vendor_id": vendor_id})
    db["vendor_gallery"].delete_many({"vendor_id": vendor_id})
    db["saved_vendors"].delete_many({"vendor_id": vendor_id})
    db["vendor_profiles"].delete_one({"_id": profile["_id"]})
    return True


def delete_account(user_id) -> bool:
    """Hard delete a principal together with its vendor profile, if any."""
    user = users.find_by_id(user_id)
    if not user:
        return False
    delete_profile(user)
    return users.delete_user(user["_id"])


# Public read path

def get_profile_by_id(profile_id: str) -> Optional[dict]:
    oid = database.to_obj_id(profile_id)
    if oid is None:
        return None
    profile = database.get_db()["vendor_profiles"].find_one({"_id": oid})
    if not profile:
        return None
    owner = users.find_by_id(profile["user_id"])
    if not owner or not owner.get("is_verified"):
        return None
    return {**_with_children(profile), "user": owner_summary(owner)}


def is_listable(profile: dict) -> bool:
    return bool((profile.get("business_name") or "").strip() and (profile.get("city") or "").strip())


def get_public_vendors() -> List[dict]:
    profiles = [p for p in database.get_documents("vendor_profiles", sort=[("created_at", -1)]) if is_listable(p)]
    owner_ids = [database.to_obj_id(p["user_id"]) for p in profiles]
    owners = {
        str(u["_id"]): u
        for u in database.get_db()["users"].find({"_id": {"$in": owner_ids}, "is_verified": True})
    }
    return [
        {**_with_children(p), "user": owner_summary(owners[p["user_id"]])}
        for p in profiles
        if p["user_id"] in owners
    ]


# Packages

def normalize_features(values) -> List[str]:
    """Accept ["a, b", "c"] or "a,b" and return ["a", "b", "c"]."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    features = []
    for value in values:
        features.extend(part.strip() for part in value.split(",") if part.strip())
    return features


def list_packages(user: dict) -> List[dict]:
    profile = require_profile(user)
    return database.get_documents("vendor_packages", {"vendor_id": str(profile["_id"])}, sort=[("created_at", 1)])


def _owned(collection_name: str, item_id: str, profile: dict, message: str) -> dict:
    oid = database.to_obj_id(item_id)
    item = None
    if oid is not None:
        item = database.get_db()[collection_name].find_one({"_id": oid, "vendor_id": str(profile["_id"])})
    if not item:
        raise NotFoundError(message)
    return item


def get_owned_package(user: dict, package_id: str) -> dict:
    return _owned("vendor_packages", package_id, require_profile(user), "Package not found")


def add_package(user: dict, fields: dict) -> dict:
    profile = require_profile(user)
    package = VendorPackage(vendor_id=str(profile["_id"]), **fields)
    package_id = database.create_document("vendor_packages", package)
    return database.get_db()["vendor_packages"].find_one({"_id": database.to_obj_id(package_id)})


def update_package(user: dict, package_id: str, fields: dict) -> dict:
    profile = require_profile(user)
    current = _owned("vendor_packages", package_id, profile, "Package not found")
    merged = VendorPackage(**{**_strip_meta(current), **fields})
    return database.get_db()["vendor_packages"].find_one_and_update(
        {"_id": current["_id"]},
        {"$set": {**merged.model_dump(), "updated_at": database.now_utc()}},
        return_document=ReturnDocument.AFTER,
    )


def delete_package(user: dict, package_id: str):
    profile = require_profile(user)
    package = _owned("vendor_packages", package_id, profile, "Package not found")
    database.get_db()["vendor_packages"].delete_one({"_id": package["_id"]})


# Gallery

def add_gallery_item(user: dict, url: str, media_type: str = "image") -> dict:
    profile = require_profile(user)
    item_id = database.create_document("vendor_gallery", VendorGallery(vendor_id=str(profile["_id"]), url=url, type=media_type))
    return database.get_db()["vendor_gallery"].find_one({"_id": database.to_obj_id(item_id)})


def delete_gallery_item(user: dict, item_id: str):
    profile = require_profile(user)
    item = _owned("vendor_gallery", item_id, profile, "Gallery item not found")
    database.get_db()["vendor_gallery"].delete_one({"_id": item["_id"]})


# Saved vendors (user side)

def save_vendor(user: dict, vendor_id: str) -> dict:
    oid = database.to_obj_id(vendor_id)
    profile = database.get_db()["vendor_profiles"].find_one({"_id": oid}) if oid else None
    if not profile:
        raise NotFoundError("Vendor not found")
    key = {"user_id": str(user["_id"]), "vendor_id": str(profile["_id"])}
    saved = database.get_db()["saved_vendors"]
    existing = saved.find_one(key)
    if existing:
        return existing
    try:
        database.create_document("saved_vendors", SavedVendor(**key))
    except DuplicateKeyError:
        pass  # saved concurrently; the row below is the one that won
    return saved.find_one(key)


def unsave_vendor(user: dict, vendor_id: str) -> bool:
    res = database.get_db()["saved_vendors"].delete_one({"user_id": str(user["_id"]), "vendor_id": vendor_id})
    return res.deleted_count > 0


def get_saved_vendors(user: dict) -> List[dict]:
    rows = database.get_documents("saved_vendors", {"user_id": str(user["_id"])}, sort=[("created_at", -1)])
    profiles = database.get_db()["vendor_profiles"]
    result = []
    for row in rows:
        profile = profiles.find_one({"_id": database.to_obj_id(row["vendor_id"])})
        if profile:
            result.append({**row, "vendor": profile})
    return result
