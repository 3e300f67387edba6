"""Complaint ledger: user feedback and the admin response workflow."""

import logging
from typing import Any, Dict, List, Optional, get_args

from pymongo import DESCENDING

from database import collection, create_document, delete_document, get_documents, now, serialize_doc, to_object_id, update_document
from errors import InvalidInput, NotFound
from schemas import (
    Complaint,
    ComplaintCategory,
    ComplaintCreate,
    ComplaintPriority,
    ComplaintStatus,
    ComplaintType,
    ComplaintUpdate,
)

logger = logging.getLogger(__name__)

FILTERS = {
    "status": get_args(ComplaintStatus),
    "type": get_args(ComplaintType),
    "priority": get_args(ComplaintPriority),
    "category": get_args(ComplaintCategory),
}


def _with_people(complaints: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    ids = {c["user"] for c in complaints} | {c["responded_by"] for c in complaints if c.get("responded_by")}
    people = {u["_id"]: u for u in collection("user").find({"_id": {"$in": list(ids)}})} if ids else {}

    out = []
    for c in complaints:
        c = dict(c)
        owner = people.get(c["user"], {})
        c["user"] = {"_id": c["user"], "name": owner.get("name", ""), "email": owner.get("email", "")}
        if c.get("responded_by"):
            responder = people.get(c["responded_by"], {})
            c["responded_by"] = {"_id": c["responded_by"], "name": responder.get("name", "")}
        out.append(serialize_doc(c))
    return out


def submit(user_id, payload: ComplaintCreate) -> Dict[str, Any]:
    uid = to_object_id(user_id)
    if uid is None:
        raise NotFound("User not found")
    complaint = Complaint(user=uid, **payload.model_dump())
    complaint_id = create_document("complaint", complaint)
    logger.info("Complaint %s submitted by user %s", complaint_id, user_id)
    return get(complaint_id)


def list_for_user(user_id) -> List[Dict[str, Any]]:
    uid = to_object_id(user_id)
    if uid is None:
        return []
    return _with_people(get_documents("complaint", {"user": uid}, sort=[("created_at", DESCENDING)]))


def get_for_user(user_id, complaint_id) -> Dict[str, Any]:
    uid, cid = to_object_id(user_id), to_object_id(complaint_id)
    doc = collection("complaint").find_one({"_id": cid, "user": uid}) if uid and cid else None
    if not doc:
        raise NotFound("Complaint not found")
    return _with_people([doc])[0]


def list_all(
    status: Optional[str] = None,
    type: Optional[str] = None,
    priority: Optional[str] = None,
    category: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    for field, value in (("status", status), ("type", type), ("priority", priority), ("category", category)):
        if not value:
            continue
        if value not in FILTERS[field]:
            raise InvalidInput(f"Invalid {field}. Must be one of: {', '.join(FILTERS[field])}")
        query[field] = value
    return _with_people(get_documents("complaint", query, sort=[("created_at", DESCENDING)]))


def get(complaint_id) -> Dict[str, Any]:
    cid = to_object_id(complaint_id)
    doc = collection("complaint").find_one({"_id": cid}) if cid else None
    if not doc:
        raise NotFound("Complaint not found")
    return _with_people([doc])[0]


def respond(complaint_id, admin_id, payload: ComplaintUpdate) -> Dict[str, Any]:
    """Apply status/priority changes; a response stamps who answered and when."""
    changes: Dict[str, Any] = {}
    if payload.status:
        changes["status"] = payload.status
    if payload.priority:
        changes["priority"] = payload.priority
    if payload.admin_response:
        changes["admin_response"] = payload.admin_response
        changes["responded_by"] = to_object_id(admin_id)
        changes["responded_at"] = now()

    if not update_document("complaint", complaint_id, changes):
        raise NotFound("Complaint not found")
    logger.info("Complaint %s updated by admin %s: %s", complaint_id, admin_id, sorted(changes))
    return get(complaint_id)


def delete(complaint_id) -> None:
    if not delete_document("complaint", complaint_id):
        raise NotFound("Complaint not found")
    logger.info("Complaint %s deleted", complaint_id)


def _counts_by(field: str) -> Dict[str, int]:
    pipeline = [{"$group": {"_id": f"${field}", "count": {"$sum": 1}}}]
    return {row["_id"]: row["count"] for row in collection("complaint").aggregate(pipeline)}


def stats() -> Dict[str, Any]:
    """Complaint counts by status, plus per-type and per-category breakdowns."""
    by_status = _counts_by("status")
    return {
        "total": sum(by_status.values()),
        "pending": by_status.get("pending", 0),
        "in_progress": by_status.get("in-progress", 0),
        "resolved": by_status.get("resolved", 0),
        "closed": by_status.get("closed", 0),
        "by_type": _counts_by("type"),
        "by_category": _counts_by("category"),
    }
