"""Roles and the authorization table."""

from __future__ import annotations

import enum


class Role(str, enum.Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    CHAPTER_ADMIN = "chapter_admin"
    PLATFORM_ADMIN = "platform_admin"


class Permission(str, enum.Enum):
    MODERATE_POSTS = "moderate_posts"
    VIEW_MODERATION_QUEUE = "view_moderation_queue"
    MANAGE_ANOMALIES = "manage_anomalies"
    VIEW_HIDDEN_CONTENT = "view_hidden_content"
    PIN_DISCUSSIONS = "pin_discussions"
    REPORT_CONTENT = "report_content"
    POST_CONTENT = "post_content"


_ADMINS = frozenset({Role.CHAPTER_ADMIN, Role.PLATFORM_ADMIN})
_EVERYONE = frozenset(Role)

AUTHORIZATION_TABLE: dict[Permission, frozenset[Role]] = {
    Permission.MODERATE_POSTS: _ADMINS,
    Permission.VIEW_MODERATION_QUEUE: _ADMINS,
    Permission.MANAGE_ANOMALIES: _ADMINS,
    Permission.VIEW_HIDDEN_CONTENT: _ADMINS,
    Permission.PIN_DISCUSSIONS: _ADMINS | {Role.TEACHER},
    Permission.REPORT_CONTENT: _EVERYONE,
    Permission.POST_CONTENT: _EVERYONE,
}


def is_allowed(role: Role | str | None, permission: Permission) -> bool:
    """Return True if ``role`` grants ``permission``."""
    if role is None:
        return False
    try:
        role = Role(role)
    except ValueError:
        return False
    return role in AUTHORIZATION_TABLE[permission]
