from enum import StrEnum


class ExhibitScope(StrEnum):
    # Gate staff scopes
    GATE_SCAN = "gate:scan"  # validate tickets and check guests in
    BOOKINGS_READ = "bookings:read"  # browse the booking / guest lists

    # Admin scopes
    ADMIN_EXPERIENCES = "admin:experiences"  # create / edit / delete experiences
    ADMIN_SCHEDULE = "admin:schedule"  # day closures and slot blocking
    ADMIN_RESET = "admin:reset"  # wipe the whole exhibition


EXHIBIT_SCOPE_DESCRIPTIONS: dict[str, str] = {
    ExhibitScope.GATE_SCAN: "Validate tickets at the gate and check guests in.",
    ExhibitScope.BOOKINGS_READ: "View bookings and guest lists.",
    ExhibitScope.ADMIN_EXPERIENCES: "Create, edit, toggle and delete experiences.",
    ExhibitScope.ADMIN_SCHEDULE: "Close days and block or unblock single slots.",
    ExhibitScope.ADMIN_RESET: "Delete every experience, booking and schedule.",
}

STAFF_SCOPES: list[str] = [ExhibitScope.GATE_SCAN, ExhibitScope.BOOKINGS_READ]
ADMIN_SCOPES: list[str] = [
    *STAFF_SCOPES,
    ExhibitScope.ADMIN_EXPERIENCES,
    ExhibitScope.ADMIN_SCHEDULE,
    ExhibitScope.ADMIN_RESET,
]
