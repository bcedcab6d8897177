"""
Default event types shipped with EventGuard.

Each entry lists the type's roles (owner first) and permissions, plus the
permissions every role grants.
"""

from __future__ import annotations

from typing import Any

DEFAULT_EVENT_TYPES: dict[str, dict[str, Any]] = {
    "shop": {
        "name": "Shop",
        "description": "E-commerce shop",
        "roles": ["owner", "manager", "staff", "customer"],
        "permissions": [
            "view shop",
            "edit shop",
            "delete shop",
            "manage products",
            "manage orders",
            "manage staff",
            "view reports",
            "manage settings",
        ],
        "grants": {
            "owner": [
                "view shop",
                "edit shop",
                "delete shop",
                "manage products",
                "manage orders",
                "manage staff",
                "view reports",
                "manage settings",
            ],
            "manager": [
                "view shop",
                "edit shop",
                "manage products",
                "manage orders",
                "manage staff",
                "view reports",
            ],
            "staff": ["view shop", "manage orders"],
            "customer": ["view shop"],
        },
    },
    "forum": {
        "name": "Forum",
        "description": "Discussion forum",
        "roles": ["owner", "moderator", "member", "guest"],
        "permissions": [
            "view forum",
            "edit forum",
            "delete forum",
            "create topics",
            "edit topics",
            "delete topics",
            "create replies",
            "edit replies",
            "delete replies",
            "manage members",
            "moderate content",
            "pin topics",
            "lock topics",
        ],
        "grants": {
            "owner": [
                "view forum",
                "edit forum",
                "delete forum",
                "create topics",
                "edit topics",
                "delete topics",
                "create replies",
                "edit replies",
                "delete replies",
                "manage members",
                "moderate content",
                "pin topics",
                "lock topics",
            ],
            "moderator": [
                "view forum",
                "create topics",
                "edit topics",
                "delete topics",
                "create replies",
                "edit replies",
                "delete replies",
                "moderate content",
                "pin topics",
                "lock topics",
            ],
            "member": ["view forum", "create topics", "create replies"],
            "guest": ["view forum"],
        },
    },
    "announcement": {
        "name": "Announcement",
        "description": "Announcement board",
        "roles": ["owner", "editor", "viewer"],
        "permissions": [
            "view announcements",
            "create announcements",
            "edit announcements",
            "delete announcements",
            "publish announcements",
            "schedule announcements",
        ],
        "grants": {
            "owner": [
                "view announcements",
                "create announcements",
                "edit announcements",
                "delete announcements",
                "publish announcements",
                "schedule announcements",
            ],
            "editor": [
                "view announcements",
                "create announcements",
                "edit announcements",
                "publish announcements",
                "schedule announcements",
            ],
            "viewer": ["view announcements"],
        },
    },
    "group": {
        "name": "Group",
        "description": "User group or community",
        "roles": ["owner", "admin", "moderator", "member"],
        "permissions": [
            "view group",
            "edit group",
            "delete group",
            "invite members",
            "remove members",
            "manage posts",
            "manage events",
            "manage settings",
        ],
        "grants": {
            "owner": [
                "view group",
                "edit group",
                "delete group",
                "invite members",
                "remove members",
                "manage posts",
                "manage events",
                "manage settings",
            ],
            "admin": [
                "view group",
                "edit group",
                "invite members",
                "remove members",
                "manage posts",
                "manage events",
                "manage settings",
            ],
            "moderator": ["view group", "remove members", "manage posts"],
            "member": ["view group"],
        },
    },
}
