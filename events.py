"""
Booking requests ("events") between a user and a vendor.

Users create events, always in the "requested" state. Only the vendor an
event was addressed to may move its status, along TRANSITIONS.
"""
import logging
from typing import List

from pymongo import ReturnDocument

import database
import users
from errors import BadRequestError, ConflictError, NotFoundError
from schemas import CreateEventRequest, Event

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "requested": {"confirmed", "cancelled"},
    "confirmed": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def _person(doc: dict) -> dict:
    if not doc:
        return None
    return {"_id": doc["_id"], "first_name": doc.get("first_name"), "last_name": doc.get("last_name"), "phone": doc.get("phone")}


def create_event(user: dict, body: CreateEventRequest) -> dict:
    vendor = users.find_by_id(body.vendor_id)
    if not vendor or "vendor" not in vendor.get("roles", []):
        raise NotFoundError("Vendor not found")
    event = Event(
        user_id=str(user["_id"]),
        vendor_id=str(vendor["_id"]),
        title=body.title,
        description=body.description,
        date=body.date,
    )
    event_id = database.create_document("events", event)
    return database.get_db()["events"].find_one({"_id": database.to_obj_id(event_id)})


def list_my_events(user: dict) -> List[dict]:
    user_id = str(user["_id"])
    if user.get("role") == "vendor":
        docs = database.get_documents("events", {"vendor_id": user_id}, sort=[("date", -1)])
        for doc in docs:
            doc["user"] = _person(users.find_by_id(doc["user_id"]))
        return docs
    docs = database.get_documents("events", {"user_id": user_id}, sort=[("date", -1)])
    for doc in docs:
        doc["vendor"] = _person(users.find_by_id(doc["vendor_id"]))
    return docs


def update_status(vendor: dict, event_id: str, status: str) -> dict:
    oid = database.to_obj_id(event_id)
    event = database.get_db()["events"].find_one({"_id": oid, "vendor_id": str(vendor["_id"])}) if oid else None
    if not event:
        raise NotFoundError("Event not found")
    if event["status"] == status:
        return event
    if status not in TRANSITIONS[event["status"]]:
        raise BadRequestError(f"Cannot change status from {event['status']} to {status}")
    logger.info("Event %s: %s -> %s", event_id, event["status"], status)
    updated = database.get_db()["events"].find_one_and_update(
        {"_id": oid, "status": event["status"]},
        {"$set": {"status": status, "updated_at": database.now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Event status changed concurrently, reload and retry")
    return updated
