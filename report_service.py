"""
Spreadsheet reports over donations, programs and volunteers.

Collections are loaded whole and folded in memory; the date range filter
applies to donation dates only. Workbooks are written with openpyxl.
"""

import calendar
import io
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Tuple

import openpyxl
from openpyxl.utils import get_column_letter

import database
from donation_service import to_donation
from errors import ValidationError
from program_service import to_program
from volunteer_service import to_volunteer

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

DATE_RANGES = ("last7days", "last30days", "lastQuarter", "ytd", "lastYear")

# Share of a program's target allotted to each cost line
BUDGET_SPLIT = (
    ("Administration", "Admin %", 0.15),
    ("Operations", "Operations %", 0.25),
    ("Services", "Services %", 0.55),
    ("Marketing", "Marketing %", 0.05),
)

DONATION_SUMMARY_HEADERS = [
    "Donation ID", "Date", "Donor", "Program ID", "Amount (Rs.)", "Payment Method", "Status", "Note",
]
DONOR_ACTIVITY_HEADERS = [
    "Donor ID", "Donor Name", "Number of Donations", "Total Amount (Rs.)",
    "Average Donation (Rs.)", "First Donation", "Last Donation", "Days Since Last Donation",
]
PROGRAM_PERFORMANCE_HEADERS = [
    "Program Name", "Category", "Target Amount (Rs.)", "Raised Amount (Rs.)",
    "Completion %", "Unique Donors", "Number of Donations", "Start Date", "End Date",
]
PROGRAM_EXPENSES_HEADERS = [
    "Program Name", "Category", "Total Budget (Rs.)",
    "Administration (Rs.)", "Operations (Rs.)", "Services (Rs.)", "Marketing (Rs.)",
    "Admin %", "Operations %", "Services %", "Marketing %",
]
VOLUNTEER_ACTIVITY_HEADERS = [
    "Volunteer ID", "Name", "Email", "Phone", "Hours Contributed", "Programs Participating", "Status", "Joined Date",
]
ANNUAL_DONATION_HEADERS = ["Donation ID", "Date", "Donor", "Program", "Amount (Rs.)", "Payment Method", "Status"]
ANNUAL_PROGRAM_HEADERS = [
    "Program ID", "Program Name", "Category", "Target Amount (Rs.)",
    "Raised Amount (Rs.)", "Completion %", "Start Date", "End Date",
]
ANNUAL_VOLUNTEER_HEADERS = ["Volunteer ID", "Name", "Email", "Status", "Hours Contributed", "Joined Date"]


@dataclass
class Sheet:
    title: str
    headers: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)

    def values(self) -> List[List[Any]]:
        return [["" if row.get(h) is None else row.get(h) for h in self.headers] for row in self.rows]


@dataclass
class Report:
    report_type: str
    sheets: List[Sheet]
    generated_at: datetime = field(default_factory=datetime.now)

    @property
    def filename(self) -> str:
        return f"{self.report_type}-{self.generated_at:%Y-%m-%d}.xlsx"

    def to_xlsx(self) -> bytes:
        wb = openpyxl.Workbook()
        wb.remove(wb.active)
        for sheet in self.sheets:
            ws = wb.create_sheet(sheet.title)
            ws.append(sheet.headers)
            for values in sheet.values():
                ws.append(values)
            for idx, header in enumerate(sheet.headers, start=1):
                ws.column_dimensions[get_column_letter(idx)].width = max(12, len(header) + 2)
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()


# ===== Helpers =====

def _months_back(d: datetime, months: int) -> datetime:
    month_index = d.year * 12 + (d.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return d.replace(year=year, month=month, day=day)


def get_date_range(date_range: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Return (start, end) for a named range, covering whole days.

    Unknown names fall back to the last 30 days.
    """
    now = now or datetime.now()
    end = now
    if date_range == "last7days":
        start = now - timedelta(days=7)
    elif date_range == "lastQuarter":
        start = _months_back(now, 3)
    elif date_range == "ytd":
        start = datetime(now.year, 1, 1)
    elif date_range == "lastYear":
        start = datetime(now.year - 1, 1, 1)
        end = datetime(now.year - 1, 12, 31)
    else:
        start = now - timedelta(days=30)
    return datetime.combine(start.date(), time.min), datetime.combine(end.date(), time.max)


def parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value)).replace(tzinfo=None)
    except ValueError:
        return None


def format_date(value: Any) -> str:
    parsed = parse_date(value)
    if parsed is None:
        return ""
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


def money(value: Optional[float]) -> str:
    return f"{(value or 0):.2f}"


def completion(raised: Optional[float], target: Optional[float]) -> str:
    if not target:
        return "0.0%"
    return f"{(raised or 0) / target * 100:.1f}%"


def filter_by_date(donations: List[dict], start: datetime, end: datetime) -> List[dict]:
    selected = []
    for donation in donations:
        when = parse_date(donation.get("date"))
        if when is not None and start <= when <= end:
            selected.append(donation)
    return selected


def _donor_label(donation: dict) -> str:
    return "Anonymous" if donation.get("is_anonymous") else donation.get("donor_name", "")


# ===== Report builders =====

def build_donation_summary(donations: List[dict]) -> List[Sheet]:
    rows = [{
        "Donation ID": d["id"],
        "Date": format_date(d.get("date")),
        "Donor": _donor_label(d),
        "Program ID": d.get("program_id"),
        "Amount (Rs.)": money(d.get("amount")),
        "Payment Method": d.get("payment_method"),
        "Status": d.get("status"),
        "Note": d.get("note", ""),
    } for d in donations]
    return [Sheet("Report", DONATION_SUMMARY_HEADERS, rows)]


def build_donor_activity(donations: List[dict], now: Optional[datetime] = None) -> List[Sheet]:
    now = now or datetime.now()
    donors: Dict[str, dict] = {}
    for d in donations:
        if d.get("is_anonymous"):
            continue
        when = parse_date(d.get("date"))
        entry = donors.get(d.get("donor_id"))
        if entry is None:
            donors[d.get("donor_id")] = {
                "donations": 1,
                "total": d.get("amount") or 0,
                "first": when,
                "last": when,
                "name": d.get("donor_name"),
            }
            continue
        entry["donations"] += 1
        entry["total"] += d.get("amount") or 0
        if when < entry["first"]:
            entry["first"] = when
        if when > entry["last"]:
            entry["last"] = when

    rows = [{
        "Donor ID": donor_id,
        "Donor Name": data["name"],
        "Number of Donations": data["donations"],
        "Total Amount (Rs.)": money(data["total"]),
        "Average Donation (Rs.)": money(data["total"] / data["donations"]),
        "First Donation": format_date(data["first"]),
        "Last Donation": format_date(data["last"]),
        "Days Since Last Donation": (now - data["last"]).days,
    } for donor_id, data in donors.items()]
    return [Sheet("Report", DONOR_ACTIVITY_HEADERS, rows)]


def build_program_performance(programs: List[dict], donations: List[dict]) -> List[Sheet]:
    stats = {p["id"]: {"donors": set(), "donations": 0} for p in programs}
    for d in donations:
        entry = stats.get(d.get("program_id"))
        if entry is None:
            continue
        entry["donations"] += 1
        if not d.get("is_anonymous"):
            entry["donors"].add(d.get("donor_id"))

    rows = [{
        "Program Name": p.get("title"),
        "Category": p.get("category"),
        "Target Amount (Rs.)": money(p.get("target")),
        "Raised Amount (Rs.)": money(p.get("raised")),
        "Completion %": completion(p.get("raised"), p.get("target")),
        "Unique Donors": len(stats[p["id"]]["donors"]),
        "Number of Donations": stats[p["id"]]["donations"],
        "Start Date": format_date(p.get("start_date")),
        "End Date": format_date(p.get("end_date")),
    } for p in programs]
    return [Sheet("Report", PROGRAM_PERFORMANCE_HEADERS, rows)]


def build_program_expenses(programs: List[dict]) -> List[Sheet]:
    rows = []
    for p in programs:
        target = p.get("target") or 0
        row = {
            "Program Name": p.get("title"),
            "Category": p.get("category"),
            "Total Budget (Rs.)": money(target),
        }
        for line, pct_header, share in BUDGET_SPLIT:
            row[f"{line} (Rs.)"] = money(target * share)
            row[pct_header] = f"{share * 100:.0f}%"
        rows.append(row)
    return [Sheet("Report", PROGRAM_EXPENSES_HEADERS, rows)]


def build_volunteer_activity(volunteers: List[dict]) -> List[Sheet]:
    per_email = Counter((v.get("email") or "").lower() for v in volunteers)
    rows = [{
        "Volunteer ID": v["id"],
        "Name": v.get("name"),
        "Email": v.get("email"),
        "Phone": v.get("phone") or "N/A",
        "Hours Contributed": v.get("hours") or 0,
        "Programs Participating": per_email[(v.get("email") or "").lower()],
        "Status": v.get("status"),
        "Joined Date": format_date(v.get("joined_date")),
    } for v in volunteers]
    return [Sheet("Report", VOLUNTEER_ACTIVITY_HEADERS, rows)]


def build_annual_report(donations: List[dict], programs: List[dict], volunteers: List[dict]) -> List[Sheet]:
    donation_rows = [{
        "Donation ID": d["id"],
        "Date": format_date(d.get("date")),
        "Donor": _donor_label(d),
        "Program": d.get("program_id"),
        "Amount (Rs.)": money(d.get("amount")),
        "Payment Method": d.get("payment_method"),
        "Status": d.get("status"),
    } for d in donations]
    program_rows = [{
        "Program ID": p["id"],
        "Program Name": p.get("title"),
        "Category": p.get("category"),
        "Target Amount (Rs.)": money(p.get("target")),
        "Raised Amount (Rs.)": money(p.get("raised")),
        "Completion %": completion(p.get("raised"), p.get("target")),
        "Start Date": format_date(p.get("start_date")),
        "End Date": format_date(p.get("end_date")),
    } for p in programs]
    volunteer_rows = [{
        "Volunteer ID": v["id"],
        "Name": v.get("name"),
        "Email": v.get("email"),
        "Status": v.get("status"),
        "Hours Contributed": v.get("hours") or 0,
        "Joined Date": format_date(v.get("joined_date")),
    } for v in volunteers]
    return [
        Sheet("Donations", ANNUAL_DONATION_HEADERS, donation_rows),
        Sheet("Programs", ANNUAL_PROGRAM_HEADERS, program_rows),
        Sheet("Volunteers", ANNUAL_VOLUNTEER_HEADERS, volunteer_rows),
    ]


REPORT_TYPES = (
    "donation-summary",
    "donor-activity",
    "program-performance",
    "program-expenses",
    "volunteer-activity",
    "annual-report",
)


# TODO: push the date range into the donations query instead of filter_by_date
def load_donations() -> List[dict]:
    return [to_donation(d) for d in database.get_documents("donations")]


def load_programs() -> List[dict]:
    return [to_program(d) for d in database.get_documents("programs")]


def load_volunteers() -> List[dict]:
    return [to_volunteer(d) for d in database.get_documents("volunteers", sort=[("name", 1)])]


def generate_report(report_type: str, date_range: str = "last30days", now: Optional[datetime] = None) -> Report:
    if report_type not in REPORT_TYPES:
        raise ValidationError(f"Unknown report type: {report_type}")
    now = now or datetime.now()
    start, end = get_date_range(date_range, now)

    if report_type == "donation-summary":
        sheets = build_donation_summary(filter_by_date(load_donations(), start, end))
    elif report_type == "donor-activity":
        sheets = build_donor_activity(filter_by_date(load_donations(), start, end), now)
    elif report_type == "program-performance":
        sheets = build_program_performance(load_programs(), filter_by_date(load_donations(), start, end))
    elif report_type == "program-expenses":
        sheets = build_program_expenses(load_programs())
    elif report_type == "volunteer-activity":
        sheets = build_volunteer_activity(load_volunteers())
    else:
        sheets = build_annual_report(
            filter_by_date(load_donations(), start, end), load_programs(), load_volunteers()
        )

    logger.info(f"Generated {report_type} report for {date_range} ({sum(len(s.rows) for s in sheets)} rows)")
    return Report(report_type, sheets, generated_at=now)
