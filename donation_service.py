"""
Donations and the program raised-amount reconciliation.

Every create/update/delete adjusts Program.raised in the same transaction as
the donation write (see database.run_transaction). The adjustment is an
increment against the stored total, not a recomputation; seed.recompute_raised
is the only path that rebuilds the total from the donations themselves.
"""

import logging
import threading
from typing import Callable, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

import database
from errors import NotFoundError
from program_service import update_program_fundraising_amount
from schemas import DonationCreate, DonationUpdate

logger = logging.getLogger(__name__)

COLLECTION = "donations"
PROGRAMS = "programs"
USERS = "users"

SORT_FIELDS = {"date": "date", "amount": "amount", "created_at": "created_at"}


def to_donation(doc: dict) -> dict:
    donation = database.serialize_doc(doc)
    donation.setdefault("donor_avatar", None)
    donation["note"] = donation.get("note") or ""
    return donation


def _lookup_donor_avatar(donor_id: str, session=None) -> Optional[str]:
    """Best-effort avatar lookup; lookup failures are logged and ignored."""
    try:
        user = database.get_document(USERS, donor_id, session=session)
    except PyMongoError as e:
        logger.error(f"Error fetching donor avatar for {donor_id}: {e}")
        return None
    if not user:
        return None
    avatar = user.get("avatar")
    return avatar if isinstance(avatar, str) else None


def _with_user_data(doc: dict) -> dict:
    donation = to_donation(doc)
    if not donation.get("is_anonymous") and donation.get("donor_id"):
        avatar = _lookup_donor_avatar(donation["donor_id"])
        if avatar is not None:
            donation["donor_avatar"] = avatar
    return donation


def _list(filt: dict, sort=None, limit: Optional[int] = None) -> List[dict]:
    docs = database.get_documents(COLLECTION, filt, sort=sort or [("created_at", DESCENDING)], limit=limit)
    return [_with_user_data(d) for d in docs]


def get_all_donations(status: Optional[str] = None, sort_by: str = "created_at",
                      order: str = "desc") -> List[dict]:
    filt = {"status": status} if status else {}
    field = SORT_FIELDS.get(sort_by, "created_at")
    direction = ASCENDING if order == "asc" else DESCENDING
    return _list(filt, sort=[(field, direction)])


def get_donations_by_program(program_id: str) -> List[dict]:
    return _list({"program_id": program_id})


def get_donations_by_donor(donor_id: str) -> List[dict]:
    return _list({"donor_id": donor_id})


def get_recent_donations(program_id: str, max_donations: int = 5) -> List[dict]:
    return _list({"program_id": program_id}, limit=max_donations)


def get_donation_by_id(donation_id: str) -> Optional[dict]:
    doc = database.get_document(COLLECTION, donation_id)
    return to_donation(doc) if doc else None


def create_donation(payload: DonationCreate, donor: Optional[dict] = None) -> dict:
    """Record a donation and add its amount to the program's raised total.

    `donor` is the signed-in user; its id and name are used unless the
    payload names a donor explicitly. There is no idempotency key: the same
    request sent twice records two donations.
    """
    data = payload.model_dump(mode="json")
    if donor:
        data["donor_id"] = data.get("donor_id") or donor.get("id")
        data["donor_name"] = data.get("donor_name") or donor.get("name")
    data["donor_name"] = data.get("donor_name") or "Anonymous"

    def txn(session):
        program = database.get_document(PROGRAMS, data["program_id"], session=session)
        if program is None:
            raise NotFoundError(f"Program with ID {data['program_id']} does not exist")
        new_raised = (program.get("raised") or 0) + data["amount"]

        avatar = data.get("donor_avatar")
        if not data["is_anonymous"] and data.get("donor_id"):
            avatar = _lookup_donor_avatar(data["donor_id"], session=session)
        data["donor_avatar"] = avatar

        donation_id = database.create_document(COLLECTION, data, session=session)
        update_program_fundraising_amount(program["_id"], new_raised, session=session)
        return donation_id

    try:
        donation_id = database.run_transaction(txn)
    except PyMongoError as e:
        logger.error(f"Error creating donation: {e}")
        raise
    logger.info(f"Recorded donation {donation_id} of {data['amount']} for program {data['program_id']}")
    return get_donation_by_id(donation_id)


def update_donation(donation_id: str, payload: DonationUpdate) -> dict:
    """Patch a donation; an amount change moves the program total by the difference."""
    fields = payload.model_dump(mode="json", exclude_unset=True)
    fields.pop("id", None)
    fields.pop("created_at", None)

    def txn(session):
        original = database.get_document(COLLECTION, donation_id, session=session)
        if original is None:
            raise NotFoundError(f"Donation with ID {donation_id} does not exist")

        new_amount = fields.get("amount")
        if new_amount is not None and new_amount != original.get("amount"):
            difference = new_amount - (original.get("amount") or 0)
            program = database.get_document(PROGRAMS, original.get("program_id"), session=session)
            if program is not None:
                update_program_fundraising_amount(
                    program["_id"], (program.get("raised") or 0) + difference, session=session
                )

        if fields:
            database.update_document(COLLECTION, donation_id, fields, session=session)

    try:
        database.run_transaction(txn)
    except PyMongoError as e:
        logger.error(f"Error updating donation {donation_id}: {e}")
        raise
    return get_donation_by_id(donation_id)


def delete_donation(donation_id: str) -> None:
    """Subtract the donation from its program (floored at zero), then delete it."""
    def txn(session):
        donation = database.get_document(COLLECTION, donation_id, session=session)
        if donation is None:
            raise NotFoundError(f"Donation with ID {donation_id} does not exist")

        program = database.get_document(PROGRAMS, donation.get("program_id"), session=session)
        if program is not None:
            new_raised = max(0, (program.get("raised") or 0) - (donation.get("amount") or 0))
            update_program_fundraising_amount(program["_id"], new_raised, session=session)
        database.delete_document(COLLECTION, donation["_id"], session=session)

    try:
        database.run_transaction(txn)
    except PyMongoError as e:
        logger.error(f"Error deleting donation {donation_id}: {e}")
        raise
    logger.info(f"Deleted donation {donation_id}")


class RecentDonationsSubscription:
    """Push the newest donations of a program to a callback on every change.

    The callback runs once with the current donations, then again after each
    change-stream event on the donations collection, until unsubscribe().
    """

    def __init__(self, program_id: str, callback: Callable[[List[dict]], None], max_donations: int = 5):
        self.program_id = program_id
        self.callback = callback
        self.max_donations = max_donations
        self._stopped = threading.Event()
        self._stream = None
        self._thread: Optional[threading.Thread] = None

    @property
    def active(self) -> bool:
        return not self._stopped.is_set()

    def _emit(self):
        try:
            self.callback(get_recent_donations(self.program_id, self.max_donations))
        except Exception as e:
            logger.error(f"Error in recent donations listener for {self.program_id}: {e}")

    def run(self):
        self._emit()
        try:
            with database.watch(COLLECTION) as stream:
                self._stream = stream
                for _change in stream:
                    if self._stopped.is_set():
                        break
                    self._emit()
        except PyMongoError as e:
            if not self._stopped.is_set():
                logger.error(f"Error in donation subscription for {self.program_id}: {e}")
        finally:
            self._stream = None

    def start(self) -> "RecentDonationsSubscription":
        self._thread = threading.Thread(target=self.run, name=f"donations-{self.program_id}", daemon=True)
        self._thread.start()
        return self

    def unsubscribe(self):
        self._stopped.set()
        stream = self._stream
        if stream is not None:
            stream.close()


def subscribe_to_recent_donations(program_id: str, callback: Callable[[List[dict]], None],
                                  max_donations: int = 5) -> RecentDonationsSubscription:
    return RecentDonationsSubscription(program_id, callback, max_donations).start()
