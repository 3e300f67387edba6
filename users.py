"""Registration, login and profile lookups."""

import logging
from typing import Any, Dict, Optional

from pymongo.errors import DuplicateKeyError

from database import collection, create_document, get_document_by_id, serialize_doc
from errors import Conflict, NotFound, Unauthorized
from schemas import User
from security import Role, create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

ADMIN_SLOT = "admin"


def public_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    """User fields safe to hand back to clients."""
    return {
        "id": str(user["_id"]),
        "name": user.get("name", ""),
        "email": user.get("email", ""),
        "role": user.get("role", Role.USER.value),
        "photo": user.get("photo", ""),
        "created_at": user.get("created_at"),
    }


def admin_exists() -> bool:
    return collection("user").find_one({"role": Role.ADMIN.value}) is not None


def register(name: str, email: str, password: str, role: Role = Role.USER, photo: str = "") -> Dict[str, Any]:
    """Create a user and return {"user": profile, "token": bearer token}.

    Only one admin may exist and emails are unique. The pre-checks give a
    clear error; the unique indexes are what actually hold both rules under races.
    """
    role = Role(role)
    email = email.strip().lower()
    if role is Role.ADMIN and admin_exists():
        raise Conflict("Admin already exists. Only one admin is allowed in the system.", {"reason": "ADMIN_EXISTS"})
    if collection("user").find_one({"email": email}) is not None:
        raise Conflict("Email already registered", {"reason": "EMAIL_EXISTS"})

    user = User(name=name, email=email, password_hash=hash_password(password), role=role, photo=photo)
    doc = user.model_dump()
    if role is Role.ADMIN:
        doc["admin_slot"] = ADMIN_SLOT

    try:
        user_id = create_document("user", doc)
    except DuplicateKeyError:
        if role is Role.ADMIN and collection("user").find_one({"admin_slot": ADMIN_SLOT}):
            raise Conflict("Admin already exists. Only one admin is allowed in the system.", {"reason": "ADMIN_EXISTS"})
        raise Conflict("Email already registered", {"reason": "EMAIL_EXISTS"})

    created = get_document_by_id("user", user_id)
    logger.info("Registered %s %s", role.value, user_id)
    return {"user": public_profile(created), "token": create_access_token(str(user_id), role)}


def authenticate(email: str, password: str) -> Dict[str, Any]:
    user = collection("user").find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise Unauthorized("Invalid credentials")
    return {"user": public_profile(user), "token": create_access_token(str(user["_id"]), Role(user.get("role", "user")))}


def get_profile(user_id: str) -> Dict[str, Any]:
    user = get_document_by_id("user", user_id)
    if not user:
        raise NotFound("User not found")
    profile = public_profile(user)
    profile["cart_items"] = sum(entry.get("quantity", 0) for entry in user.get("cart", []))
    return serialize_doc(profile)


def seed_admin(email: Optional[str], password: Optional[str], name: str = "Admin") -> bool:
    """Create the admin from configuration if none exists yet."""
    if not email or not password or admin_exists():
        return False
    try:
        register(name=name, email=email, password=password, role=Role.ADMIN)
    except Conflict:
        logger.info("Admin seeding skipped, an admin or the email already exists")
        return False
    logger.info("Seeded admin account %s", email)
    return True
