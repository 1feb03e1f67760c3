import logging
from typing import List, Optional

from pymongo import ASCENDING, DESCENDING

import database
import program_service
from errors import NotFoundError
from schemas import VolunteerCreate, VolunteerUpdate

logger = logging.getLogger(__name__)

COLLECTION = "volunteers"


def to_volunteer(doc: dict) -> dict:
    volunteer = database.serialize_doc(doc)
    volunteer.setdefault("phone", None)
    volunteer.setdefault("hours", 0)
    return volunteer


def get_all_volunteers() -> List[dict]:
    return [to_volunteer(d) for d in database.get_documents(COLLECTION, sort=[("name", ASCENDING)])]


def get_volunteers_by_program(program_id: str) -> List[dict]:
    docs = database.get_documents(COLLECTION, {"program_id": program_id}, sort=[("joined_date", DESCENDING)])
    return [to_volunteer(d) for d in docs]


def get_active_volunteers_by_program(program_id: str) -> List[dict]:
    docs = database.get_documents(
        COLLECTION, {"program_id": program_id, "status": "active"}, sort=[("joined_date", DESCENDING)]
    )
    return [to_volunteer(d) for d in docs]


def get_volunteer_by_id(volunteer_id: str) -> Optional[dict]:
    doc = database.get_document(COLLECTION, volunteer_id)
    return to_volunteer(doc) if doc else None


def recount_program_volunteers(program_id: str) -> int:
    """Overwrite Program.volunteers with the number of active volunteers."""
    count = database.count_documents(COLLECTION, {"program_id": program_id, "status": "active"})
    program_service.update_program_volunteer_count(program_id, count)
    return count


def create_volunteer(payload: VolunteerCreate) -> dict:
    program_service.require_program(payload.program_id)
    volunteer_id = database.create_document(COLLECTION, payload.model_dump(mode="json"))
    recount_program_volunteers(payload.program_id)
    logger.info(f"Added volunteer {volunteer_id} to program {payload.program_id}")
    return get_volunteer_by_id(volunteer_id)


def update_volunteer(volunteer_id: str, payload: VolunteerUpdate) -> dict:
    original = get_volunteer_by_id(volunteer_id)
    if original is None:
        raise NotFoundError(f"Volunteer with ID {volunteer_id} does not exist")
    fields = payload.model_dump(mode="json", exclude_unset=True)
    fields.pop("id", None)

    old_program_id = original["program_id"]
    new_program_id = fields.get("program_id")
    program_changed = bool(new_program_id) and new_program_id != old_program_id
    status_changed = bool(fields.get("status")) and fields["status"] != original.get("status")
    if program_changed:
        program_service.require_program(new_program_id)

    if fields:
        database.update_document(COLLECTION, volunteer_id, fields)

    if program_changed or status_changed:
        recount_program_volunteers(old_program_id)
        if program_changed:
            recount_program_volunteers(new_program_id)
    return get_volunteer_by_id(volunteer_id)


def delete_volunteer(volunteer_id: str) -> None:
    volunteer = get_volunteer_by_id(volunteer_id)
    if volunteer is None:
        raise NotFoundError(f"Volunteer with ID {volunteer_id} does not exist")
    database.delete_document(COLLECTION, volunteer_id)
    recount_program_volunteers(volunteer["program_id"])
    logger.info(f"Removed volunteer {volunteer_id}")
