import logging
from typing import List, Optional

from pymongo import DESCENDING
from pymongo.errors import PyMongoError

import database
from errors import NotFoundError, ValidationError
from schemas import ProgramCreate, ProgramUpdate

logger = logging.getLogger(__name__)

COLLECTION = "programs"

# Derived fields are written only through the reconciliation helpers
PROTECTED_FIELDS = ("id", "_id", "created_at", "raised", "volunteers")


def to_program(doc: dict) -> dict:
    program = database.serialize_doc(doc)
    program.setdefault("raised", 0)
    program.setdefault("volunteers", 0)
    program.setdefault("is_featured", False)
    program.setdefault("image_url", "")
    program.setdefault("tags", [])
    program.setdefault("short_description", "")
    program["raised"] = program["raised"] or 0
    program["volunteers"] = program["volunteers"] or 0
    return program


def get_all_programs(status: Optional[str] = None, category: Optional[str] = None,
                     search: Optional[str] = None) -> List[dict]:
    filt = {}
    if status:
        filt["status"] = status
    if category:
        filt["category"] = category
    programs = [to_program(d) for d in database.get_documents(COLLECTION, filt, sort=[("created_at", DESCENDING)])]
    if search:
        needle = search.lower()
        programs = [
            p for p in programs
            if needle in (p.get("title") or "").lower()
            or needle in (p.get("description") or "").lower()
            or any(needle in tag.lower() for tag in p.get("tags") or [])
        ]
    return programs


def get_featured_programs() -> List[dict]:
    docs = database.get_documents(
        COLLECTION, {"is_featured": True, "status": "active"}, sort=[("created_at", DESCENDING)]
    )
    return [to_program(d) for d in docs]


def get_program_by_id(program_id: str) -> Optional[dict]:
    doc = database.get_document(COLLECTION, program_id)
    return to_program(doc) if doc else None


def require_program(program_id: str) -> dict:
    program = get_program_by_id(program_id)
    if program is None:
        raise NotFoundError(f"Program with ID {program_id} does not exist")
    return program


def create_program(payload: ProgramCreate) -> dict:
    data = payload.model_dump(mode="json")
    data["raised"] = 0
    data["volunteers"] = 0
    try:
        program_id = database.create_document(COLLECTION, data)
    except PyMongoError as e:
        logger.error(f"Error creating program: {e}")
        raise
    logger.info(f"Created program {program_id} ({payload.title})")
    return get_program_by_id(program_id)


def update_program(program_id: str, payload: ProgramUpdate) -> dict:
    existing = require_program(program_id)
    fields = {k: v for k, v in payload.model_dump(mode="json", exclude_unset=True).items()
              if k not in PROTECTED_FIELDS}
    start = fields.get("start_date", existing.get("start_date"))
    end = fields.get("end_date", existing.get("end_date"))
    if start and end and end < start:
        raise ValidationError("End date must not be before start date")
    fields["updated_at"] = database.now_utc()
    database.update_document(COLLECTION, program_id, fields)
    return get_program_by_id(program_id)


def delete_program(program_id: str) -> None:
    if not database.delete_document(COLLECTION, program_id):
        raise NotFoundError(f"Program with ID {program_id} does not exist")
    logger.info(f"Deleted program {program_id}")


def update_program_fundraising_amount(program_id: str, new_amount: float, session=None) -> None:
    database.update_document(
        COLLECTION, program_id, {"raised": new_amount, "updated_at": database.now_utc()}, session=session
    )


def update_program_volunteer_count(program_id: str, count: int) -> None:
    database.update_document(
        COLLECTION, program_id, {"volunteers": count, "updated_at": database.now_utc()}
    )
