import logging
from typing import List, Optional
from urllib.parse import quote_plus

from pymongo import ASCENDING

import database
from errors import EmailAlreadyExistsError, NotFoundError
from schemas import OnboardingPayload, UserUpdate

logger = logging.getLogger(__name__)

COLLECTION = "users"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def avatar_url(name: str) -> str:
    return f"https://ui-avatars.com/api/?name={quote_plus(name)}"


def to_user(doc: dict) -> dict:
    user = database.serialize_doc(doc)
    user.pop("password", None)
    user.setdefault("avatar", "")
    user.setdefault("role", "donor")
    user["onboarding_completed"] = bool(user.get("onboarding_completed"))
    return user


def get_user_doc_by_email(email: str) -> Optional[dict]:
    return database.find_document(COLLECTION, {"email": normalize_email(email)})


def email_exists(email: str) -> bool:
    return get_user_doc_by_email(email) is not None


def get_user_by_id(user_id: str) -> Optional[dict]:
    doc = database.get_document(COLLECTION, user_id)
    return to_user(doc) if doc else None


def list_users(role: Optional[str] = None) -> List[dict]:
    filt = {"role": role} if role else {}
    return [to_user(d) for d in database.get_documents(COLLECTION, filt, sort=[("name", ASCENDING)])]


def create_user(name: str, email: str, password_hash: Optional[str], role: str = "donor") -> dict:
    """Insert a user document; the caller hashes the password."""
    email = normalize_email(email)
    if email_exists(email):
        raise EmailAlreadyExistsError()
    user_id = database.create_document(COLLECTION, {
        "name": name,
        "email": email,
        "password": password_hash,
        "role": role,
        "avatar": avatar_url(name),
        "onboarding_completed": False,
        "is_active": True,
    })
    logger.info(f"Created {role} account {user_id}")
    return get_user_by_id(user_id)


def _require(user_id: str) -> None:
    if database.get_document(COLLECTION, user_id) is None:
        raise NotFoundError(f"User with ID {user_id} does not exist")


def update_user_profile(user_id: str, payload: UserUpdate) -> dict:
    _require(user_id)
    fields = payload.model_dump(exclude_unset=True)
    fields["updated_at"] = database.now_utc()
    database.update_document(COLLECTION, user_id, fields)
    return get_user_by_id(user_id)


def complete_onboarding(user_id: str, payload: OnboardingPayload) -> dict:
    _require(user_id)
    fields = payload.model_dump()
    fields["onboarding_completed"] = True
    fields["updated_at"] = database.now_utc()
    database.update_document(COLLECTION, user_id, fields)
    return get_user_by_id(user_id)


def update_user_role(user_id: str, role: str, is_active: Optional[bool] = None) -> dict:
    _require(user_id)
    fields = {"role": role, "updated_at": database.now_utc()}
    if is_active is not None:
        fields["is_active"] = is_active
    database.update_document(COLLECTION, user_id, fields)
    return get_user_by_id(user_id)


def set_password(user_id: str, password_hash: str) -> None:
    database.update_document(COLLECTION, user_id, {"password": password_hash, "updated_at": database.now_utc()})


def delete_user(user_id: str) -> None:
    if not database.delete_document(COLLECTION, user_id):
        raise NotFoundError(f"User with ID {user_id} does not exist")
