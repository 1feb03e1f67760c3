"""Dashboard statistics folded over full collections."""

from collections import Counter, defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from report_service import load_donations, load_programs, load_volunteers, parse_date

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

AMOUNT_BANDS = [
    (0, 1000, "Less than Rs.1,000"),
    (1000, 5000, "Rs.1,000 - Rs.5,000"),
    (5000, 10000, "Rs.5,000 - Rs.10,000"),
    (10000, 50000, "Rs.10,000 - Rs.50,000"),
    (50000, float("inf"), "More than Rs.50,000"),
]


def _record_date(item: dict) -> datetime:
    for key in ("date", "created_at", "joined_date"):
        parsed = parse_date(item.get(key))
        if parsed is not None:
            return parsed
    return datetime.min


def growth(items: List[dict], amount_key: Optional[str] = None) -> Dict[str, Any]:
    """Compare the later half of date-sorted records with the earlier half."""
    if not items:
        return {"value": "0%", "is_positive": True, "raw": 0}
    ordered = sorted(items, key=_record_date)
    half = len(ordered) // 2
    if amount_key:
        first = sum(i.get(amount_key) or 0 for i in ordered[:half])
        second = sum(i.get(amount_key) or 0 for i in ordered[half:])
    else:
        first, second = len(ordered[:half]), len(ordered[half:])
    if first == 0:
        return {"value": "100%" if second > 0 else "0%", "is_positive": True, "raw": 100}
    rate = (second - first) / first * 100
    return {"value": f"{abs(rate):.1f}%", "is_positive": rate >= 0, "raw": rate}


def monthly_totals(donations: List[dict], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Donation totals for the trailing 12 months, oldest first."""
    now = now or datetime.now()
    totals: Dict[tuple, float] = {}
    for back in range(11, -1, -1):
        index = now.year * 12 + now.month - 1 - back
        totals[divmod(index, 12)] = 0
    for d in donations:
        when = parse_date(d.get("date"))
        if when is None:
            continue
        key = (when.year, when.month - 1)
        if key in totals:
            totals[key] += d.get("amount") or 0
    return [{"label": f"{MONTH_NAMES[m]} {y}", "total": total} for (y, m), total in totals.items()]


def category_distribution(programs: List[dict], top: int = 5) -> List[Dict[str, Any]]:
    counts = Counter(p.get("category") for p in programs).most_common(top)
    total = sum(c for _, c in counts)
    return [{"category": cat, "count": c, "percentage": round(c / total * 100)} for cat, c in counts]


def amount_distribution(donations: List[dict]) -> List[Dict[str, Any]]:
    total = len(donations)
    bands = []
    for low, high, label in AMOUNT_BANDS:
        count = sum(1 for d in donations if low <= (d.get("amount") or 0) < high)
        bands.append({"label": label, "count": count, "percentage": round(count / total * 100) if total else 0})
    return bands


def top_donors(donations: List[dict], top: int = 5) -> List[Dict[str, Any]]:
    donors: Dict[str, dict] = {}
    for d in donations:
        if d.get("is_anonymous"):
            continue
        entry = donors.setdefault(d.get("donor_id"), {
            "id": d.get("donor_id"), "name": d.get("donor_name"), "total": 0, "count": 0,
        })
        entry["total"] += d.get("amount") or 0
        entry["count"] += 1
    return sorted(donors.values(), key=lambda e: e["total"], reverse=True)[:top]


def _unique_donors(donations: List[dict]) -> int:
    return len({d.get("donor_id") for d in donations if not d.get("is_anonymous")})


def dashboard_summary(now: Optional[datetime] = None) -> Dict[str, Any]:
    donations = load_donations()
    programs = load_programs()
    volunteers = load_volunteers()

    total_amount = sum(d.get("amount") or 0 for d in donations)
    named = [{"date": d.get("date"), "id": d.get("donor_id")} for d in donations if not d.get("is_anonymous")]
    return {
        "total_donations_amount": total_amount,
        "donation_count": len(donations),
        "unique_donors": _unique_donors(donations),
        "average_donation": total_amount / len(donations) if donations else 0,
        "active_programs": sum(1 for p in programs if p.get("status") == "active"),
        "volunteer_count": len(volunteers),
        "growth": {
            "donations": growth(donations, "amount"),
            "donors": growth(named),
            "programs": growth(programs),
            "volunteers": growth(volunteers),
        },
        "monthly_totals": monthly_totals(donations, now),
        "categories": category_distribution(programs),
        "amount_distribution": amount_distribution(donations),
        "top_donors": top_donors(donations),
    }


def donor_statistics() -> Dict[str, Any]:
    donations = load_donations()
    per_donor = Counter(d.get("donor_id") for d in donations)
    by_weekday: Dict[str, Dict[str, float]] = defaultdict(lambda: {"count": 0, "amount": 0})
    for d in donations:
        when = parse_date(d.get("date"))
        if when is None:
            continue
        day = by_weekday[WEEKDAYS[when.weekday()]]
        day["count"] += 1
        day["amount"] += d.get("amount") or 0
    return {
        "unique_donors": _unique_donors(donations),
        "average_donation": sum(d.get("amount") or 0 for d in donations) / len(donations) if donations else 0,
        "repeat_donors": sum(1 for count in per_donor.values() if count > 1),
        "donations_by_weekday": sorted(
            ({"day": day, **values} for day, values in by_weekday.items()),
            key=lambda e: e["count"], reverse=True,
        ),
    }


def donor_summary(donations: List[dict]) -> Dict[str, Any]:
    """Totals for one donor's own donation history."""
    completed = [d for d in donations if d.get("status") == "completed"]
    latest = max(donations, key=_record_date) if donations else None
    return {
        "total_donated": sum(d.get("amount") or 0 for d in completed),
        "donation_count": len(donations),
        "programs_supported": len({d.get("program_id") for d in donations}),
        "latest_donation": latest,
    }
