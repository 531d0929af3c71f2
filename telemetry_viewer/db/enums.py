"""Enum definitions for application constants."""

from enum import Enum


class Role(str, Enum):
    """
    Operator roles with increasing privilege levels.

    - BASIC: read dashboards, ingest and delete single events/sessions
    - ADVANCED: bulk event deletion and log export
    - ADMINISTRATOR: teams, orgs, mappings and operator management
    - GOD: everything, including other god accounts
    """
    BASIC = "basic"
    ADVANCED = "advanced"
    ADMINISTRATOR = "administrator"
    GOD = "god"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


ROLE_ORDER: dict[Role, int] = {
    Role.BASIC: 0,
    Role.ADVANCED: 1,
    Role.ADMINISTRATOR: 2,
    Role.GOD: 3,
}

# Roles allowed to manage operators; at least one holder must always exist.
ROLES_CAN_ADMINISTER = {Role.ADMINISTRATOR, Role.GOD}


def role_allows(role: Role | str, required: Role | str) -> bool:
    """True when ``role`` sits at or above ``required`` in the role ordering."""
    return ROLE_ORDER[Role(role)] >= ROLE_ORDER[Role(required)]


class EventKind(str, Enum):
    """Kinds of telemetry events accepted by ingest."""
    TOOL_CALL = "tool_call"
    TOOL_ERROR = "tool_error"
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    CUSTOM = "custom"
    ERROR = "error"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


TOOL_EVENT_KINDS = {EventKind.TOOL_CALL, EventKind.TOOL_ERROR}
FAILURE_EVENT_KINDS = {EventKind.TOOL_ERROR, EventKind.ERROR}
