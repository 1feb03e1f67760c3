"""
Developer-only data seeding.

Besides inserting mock programs, donors, donations and volunteers, this module
holds the only code that rebuilds Program.raised from the donations
themselves (recompute_raised). The /dev routes answer 404 unless ENABLE_DEV_ROUTES=1.
"""

import logging
import random
from datetime import date
from typing import Dict, List, Optional

import database
from volunteer_service import recount_program_volunteers

logger = logging.getLogger(__name__)

MOCK_PROGRAMS = [
    {
        "title": "Winter Relief",
        "description": "Heating assistance, winter clothing and emergency shelter for families in need "
                       "during the coldest months of the year.",
        "short_description": "Help families stay warm this winter with essential supplies and shelter support.",
        "target": 10000, "start_date": "2023-11-01", "end_date": "2023-12-31", "status": "active",
        "category": "Emergency Aid", "location": "Northeast Region", "manager": "Sarah Johnson",
        "is_featured": True, "tags": ["winter", "emergency", "families"],
    },
    {
        "title": "Education Fund",
        "description": "Scholarships, books and tutoring for students from low-income backgrounds.",
        "short_description": "Support underprivileged children's education through scholarships and learning materials.",
        "target": 20000, "start_date": "2023-08-01", "end_date": "2023-11-30", "status": "active",
        "category": "Education", "location": "Multiple Cities", "manager": "Michael Chen",
        "is_featured": True, "tags": ["education", "children", "scholarships"],
    },
    {
        "title": "Healthcare Initiative",
        "description": "Free medical camps, health screenings and awareness programs in underserved areas.",
        "short_description": "Providing medical services and health education to underserved communities.",
        "target": 30000, "start_date": "2023-09-15", "end_date": "2024-03-15", "status": "active",
        "category": "Healthcare", "location": "Rural Areas", "manager": "Dr. Lisa Wong",
        "is_featured": False, "tags": ["healthcare", "medical", "community"],
    },
    {
        "title": "Clean Water Project",
        "description": "Wells, rainwater harvesting and water purification for communities facing water scarcity.",
        "short_description": "Building wells and water filtration systems in areas with limited access to clean water.",
        "target": 15000, "start_date": "2023-10-01", "end_date": "2024-02-28", "status": "active",
        "category": "Infrastructure", "location": "Southern Region", "manager": "Robert Miller",
        "is_featured": True, "tags": ["water", "infrastructure", "health"],
    },
    {
        "title": "Youth Mentorship",
        "description": "Pairs at-risk young people with trained adult mentors.",
        "short_description": "Connecting at-risk youth with mentors to provide guidance and support.",
        "target": 8000, "start_date": "2023-09-01", "end_date": "2024-06-30", "status": "active",
        "category": "Community", "location": "Urban Centers", "manager": "Jamal Wilson",
        "is_featured": False, "tags": ["youth", "mentorship", "community"],
    },
    {
        "title": "Summer Camp",
        "description": "Recreation, arts and sports for children from disadvantaged backgrounds.",
        "short_description": "Annual summer camp for underprivileged children.",
        "target": 12000, "start_date": "2024-06-01", "end_date": "2024-08-31", "status": "draft",
        "category": "Education", "location": "Mountain Resort", "manager": "Emily Rodriguez",
        "is_featured": False, "tags": ["summer", "children", "recreation"],
    },
]

MOCK_DONORS = [
    {"name": "John Smith", "email": "john@example.com"},
    {"name": "Jane Doe", "email": "jane@example.com"},
    {"name": "Michael Johnson", "email": "michael@example.com"},
    {"name": "Sarah Williams", "email": "sarah@example.com"},
    {"name": "Robert Brown", "email": "robert@example.com"},
]

MOCK_VOLUNTEERS = [
    {"name": "Alice Cooper", "email": "alice@example.com", "phone": "555-1234"},
    {"name": "Bob Wilson", "email": "bob@example.com", "phone": "555-5678"},
    {"name": "Charlie Davis", "email": "charlie@example.com", "phone": "555-9012"},
    {"name": "Diana Evans", "email": "diana@example.com", "phone": "555-3456"},
    {"name": "Edward Martin", "email": "edward@example.com", "phone": "555-7890"},
]

PAYMENT_METHODS = ["Credit Card", "PayPal", "Bank Transfer"]
VOLUNTEER_ROLES = ["Helper", "Coordinator", "Driver", "Counselor"]


def _program_ids() -> List[str]:
    return [str(d["_id"]) for d in database.get_documents("programs")]


def _ensure_users(people: List[dict], role: str) -> List[str]:
    ids = []
    for person in people:
        existing = database.find_document("users", {"email": person["email"]})
        if existing:
            ids.append(str(existing["_id"]))
            continue
        ids.append(database.create_document("users", {
            "name": person["name"],
            "email": person["email"],
            "role": role,
            "avatar": "",
            "onboarding_completed": False,
        }))
    return ids


def recompute_raised(program_id: str) -> float:
    """Overwrite Program.raised with the sum of its completed donations."""
    donations = database.get_documents("donations", {"program_id": program_id, "status": "completed"})
    total = sum(d.get("amount") or 0 for d in donations)
    database.update_document("programs", program_id, {"raised": total, "updated_at": database.now_utc()})
    return total


def recompute_all() -> Dict[str, dict]:
    """Rebuild both derived aggregates of every program from source documents."""
    results = {}
    for program_id in _program_ids():
        results[program_id] = {
            "raised": recompute_raised(program_id),
            "volunteers": recount_program_volunteers(program_id),
        }
    logger.info(f"Recomputed aggregates for {len(results)} programs")
    return results


def add_mock_programs() -> dict:
    titles = [p["title"] for p in MOCK_PROGRAMS]
    existing = database.count_documents("programs", {"title": {"$in": titles}})
    if existing:
        return {
            "success": False,
            "message": f"Found {existing} existing programs with the same titles. Please clear data first.",
        }
    program_ids = []
    for program in MOCK_PROGRAMS:
        program_ids.append(database.create_document("programs", {
            **program, "raised": 0, "volunteers": 0, "image_url": "",
        }))
    return {
        "success": True,
        "message": f"Successfully added {len(program_ids)} programs.",
        "program_ids": program_ids,
    }


def add_mock_donations(rng: Optional[random.Random] = None) -> dict:
    rng = rng or random.Random()
    program_ids = _program_ids()
    if not program_ids:
        return {"success": False, "message": "No programs found. Please add programs first."}

    donor_ids = _ensure_users(MOCK_DONORS, "donor")
    added = 0
    for program_id in program_ids:
        for _ in range(rng.randint(3, 5)):
            index = rng.randrange(len(donor_ids))
            database.create_document("donations", {
                "program_id": program_id,
                "donor_id": donor_ids[index],
                "donor_name": MOCK_DONORS[index]["name"],
                "donor_avatar": None,
                "amount": rng.randint(100, 999),
                "date": date.today().isoformat(),
                "status": "completed",
                "payment_method": rng.choice(PAYMENT_METHODS),
                "is_anonymous": rng.random() > 0.8,
                "note": "",
            })
            added += 1
        recompute_raised(program_id)
    return {
        "success": True,
        "message": f"Successfully added {added} donations across {len(program_ids)} programs.",
        "user_ids": donor_ids,
    }


def add_mock_volunteers(rng: Optional[random.Random] = None) -> dict:
    rng = rng or random.Random()
    program_ids = _program_ids()
    if not program_ids:
        return {"success": False, "message": "No programs found. Please add programs first."}

    user_ids = _ensure_users(MOCK_VOLUNTEERS, "volunteer")
    added = 0
    for program_id in program_ids:
        picks = rng.sample(range(len(MOCK_VOLUNTEERS)), rng.randint(2, 4))
        for index in picks:
            person = MOCK_VOLUNTEERS[index]
            database.create_document("volunteers", {
                "program_id": program_id,
                "name": person["name"],
                "email": person["email"],
                "phone": person["phone"],
                "role": rng.choice(VOLUNTEER_ROLES),
                "joined_date": date.today().isoformat(),
                "status": "active",
                "hours": 0,
            })
            added += 1
        recount_program_volunteers(program_id)
    return {
        "success": True,
        "message": f"Successfully added {added} volunteers across {len(program_ids)} programs.",
        "user_ids": user_ids,
    }


def update_featured_programs() -> dict:
    featured_titles = {p["title"] for p in MOCK_PROGRAMS if p["is_featured"]}
    programs = database.get_documents("programs")
    if not programs:
        return {"success": False, "message": "No programs found to mark as featured."}
    featured = 0
    for program in programs:
        is_featured = program.get("title") in featured_titles
        database.update_document("programs", program["_id"], {
            "is_featured": is_featured, "updated_at": database.now_utc(),
        })
        featured += is_featured
    return {
        "success": True,
        "message": f"Successfully updated featured status for {len(programs)} programs. "
                   f"{featured} programs marked as featured.",
    }


def clear_all_data() -> dict:
    programs = database.delete_documents("programs")
    donations = database.delete_documents("donations")
    volunteers = database.delete_documents("volunteers")
    logger.warning(f"Cleared {programs} programs, {donations} donations, {volunteers} volunteers")
    return {
        "success": True,
        "message": f"Successfully deleted {programs} programs, {donations} donations, "
                   f"and {volunteers} volunteers.",
    }
