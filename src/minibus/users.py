"""User directory stored as a single document, mirroring the bookings ledger."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any, TypedDict, cast

from aws_lambda_powertools import Logger

from . import store
from .errors import Forbidden, UserNotFound, ValidationError
from .models import User, UserCreate
from .phone import is_valid_phone, mask_phone, normalize_phone

logger = Logger()

USERS_KEY = "users"

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class UserItem(TypedDict, total=False):
    id: int
    name: str
    phone: str
    email: str | None
    role: str
    created_at: str


def _items(doc: dict[str, Any]) -> list[UserItem]:
    raw = doc.get("users") or []
    return [cast(UserItem, it) for it in raw if isinstance(it, dict)]


def _metadata(items: list[UserItem]) -> dict[str, int]:
    return {
        "total_users": len(items),
        "total_admins": sum(1 for it in items if it.get("role") == "admin"),
    }


def list_users() -> list[User]:
    doc = store.get_document(USERS_KEY) or {}
    return [_to_model(it) for it in _items(doc)]


def find_by_phone(phone: str) -> User:
    normalized = normalize_phone(phone)
    for user in list_users():
        if user.phone == normalized:
            return user
    logger.info("Unknown phone number", extra={"phone": mask_phone(normalized)})
    raise UserNotFound()


def get_user(user_id: int) -> User:
    for user in list_users():
        if user.id == user_id:
            return user
    raise UserNotFound()


def admin_emails() -> list[str]:
    return [u.email for u in list_users() if u.role == "admin" and u.email]


def admin_phones() -> list[str]:
    return [u.phone for u in list_users() if u.role == "admin"]


def create_user(payload: UserCreate, now: datetime | None = None) -> User:
    phone = normalize_phone(payload.phone)
    if not is_valid_phone(phone):
        raise ValidationError("Invalid phone number format")
    email = (payload.email or "").strip() or None
    if email and not _EMAIL.match(email):
        raise ValidationError("Invalid email address format")

    def add(doc: dict[str, Any]) -> User:
        items = _items(doc)
        if any(it.get("phone") == phone for it in items):
            raise ValidationError("Phone number already registered")
        user_id = int(doc.get("next_id", 1))
        item: UserItem = {
            "id": user_id,
            "name": payload.name.strip(),
            "phone": phone,
            "email": email,
            "role": payload.role,
            "created_at": (now or datetime.now(UTC)).isoformat(),
        }
        items.append(item)
        doc["users"] = items
        doc["next_id"] = user_id + 1
        doc["metadata"] = _metadata(items)
        return _to_model(item)

    user = store.modify_document(USERS_KEY, add)
    logger.info("User created", extra={"user_id": user.id, "role": user.role, "phone": mask_phone(phone)})
    return user


def delete_user(user_id: int) -> None:
    def remove(doc: dict[str, Any]) -> None:
        items = _items(doc)
        for idx, it in enumerate(items):
            if int(it["id"]) != user_id:
                continue
            if it.get("role") == "admin":
                raise Forbidden("Administrator accounts cannot be deleted")
            del items[idx]
            doc["users"] = items
            doc["metadata"] = _metadata(items)
            return
        raise UserNotFound()

    store.modify_document(USERS_KEY, remove)
    logger.info("User deleted", extra={"user_id": user_id})


def _to_model(item: UserItem) -> User:
    created_at = item.get("created_at")
    return User(
        id=int(item["id"]),
        name=item["name"],
        phone=item["phone"],
        role=item.get("role", "user"),  # type: ignore[arg-type]
        email=item.get("email"),
        created_at=datetime.fromisoformat(created_at) if created_at else None,
    )
