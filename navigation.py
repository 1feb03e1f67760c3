"""Role-based navigation for the dashboard shell."""

from typing import List, Optional

NAV_ITEMS = [
    {
        "title": "Dashboard",
        "href": "/",
        "roles": ["admin", "donor", "volunteer"],
    },
    {
        "title": "User Management",
        "href": "/users",
        "sub_items": [
            {"title": "All Users", "href": "/users"},
            {"title": "Add User", "href": "/users/add"},
        ],
        "roles": ["admin"],
    },
    {
        "title": "Donation Management",
        "href": "/donations",
        "sub_items": [{"title": "Donations Overview", "href": "/donations"}],
        "roles": ["admin"],
    },
    {
        "title": "My Donations",
        "href": "/my-donations",
        "sub_items": [
            {"title": "Make a Donation", "href": "/my-donations/new"},
            {"title": "My Donation History", "href": "/my-donations/history"},
        ],
        "roles": ["donor"],
    },
    {
        "title": "Program Management",
        "href": "/programs",
        "sub_items": [
            {"title": "Programs Overview", "href": "/programs"},
            {"title": "Create Program", "href": "/programs/new"},
            {"title": "Program Details", "href": "/programs/details"},
        ],
        "roles": ["admin"],
    },
    {
        "title": "Programs",
        "href": "/programs/public",
        "sub_items": [
            {"title": "All Programs", "href": "/programs/public"},
            {"title": "Featured Programs", "href": "/programs/public/featured"},
        ],
        "roles": ["donor", "volunteer"],
    },
    {
        "title": "Analytics & Reports",
        "href": "/analytics",
        "sub_items": [
            {"title": "Dashboard", "href": "/analytics"},
            {"title": "Generate Reports", "href": "/analytics/reports"},
            {"title": "Donor Analytics", "href": "/analytics/donors"},
        ],
        "roles": ["admin"],
    },
    {
        "title": "Settings",
        "href": "/settings",
        "sub_items": [{"title": "Account Settings", "href": "/settings"}],
        "roles": ["admin", "donor", "volunteer"],
    },
]


def visible_nav_items(role: Optional[str], items: List[dict] = NAV_ITEMS) -> List[dict]:
    if not role:
        return []
    return [item for item in items if role in item["roles"]]


def can_access(role: Optional[str], path: str, items: List[dict] = NAV_ITEMS) -> bool:
    """True when the path belongs to an item (or sub item) visible to the role."""
    for item in visible_nav_items(role, items):
        hrefs = [item["href"]] + [sub["href"] for sub in item.get("sub_items", [])]
        if path in hrefs:
            return True
    return False
