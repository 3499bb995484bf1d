from typing import Any, Optional

SUPER_ADMIN = "super_admin"
CLUB_ADMIN = "club_admin"
EVENT_VOLUNTEER = "event_volunteer"
READ_ONLY_ANALYTICS = "read_only_analytics"

ROLES = frozenset({SUPER_ADMIN, CLUB_ADMIN, EVENT_VOLUNTEER, READ_ONLY_ANALYTICS})
CLUB_SCOPED_ROLES = frozenset({CLUB_ADMIN, EVENT_VOLUNTEER})


def normalize_role(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value if value in ROLES else None


def is_authorized(operator_role: Any, operator_club_id: Optional[str], event_club_id: Optional[str]) -> bool:
    """Can an operator with this role and club check people in to this event?

    super_admin: always. club_admin / event_volunteer: only when both club ids
    are present and equal. Anything else, unknown roles included: never.
    """
    role = normalize_role(operator_role)
    if role == SUPER_ADMIN:
        return True
    if role not in CLUB_SCOPED_ROLES:
        return False
    if not operator_club_id or not event_club_id:
        return False
    return str(operator_club_id) == str(event_club_id)
