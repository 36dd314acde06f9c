"""
ITSM Engine Errors

Raised by the application services only. The rules core never raises
for missing or inconsistent reference data; it returns None instead.
"""


class ITSMError(Exception):
    """Base class for engine errors."""
    pass


class NotFoundError(ITSMError):
    """Raised when a referenced record does not exist."""

    entity = "Record"

    def __init__(self, record_id):
        self.record_id = record_id
        super().__init__(f"{self.entity} {record_id} not found")


class TicketNotFoundError(NotFoundError):
    entity = "Ticket"


class RuleNotFoundError(NotFoundError):
    entity = "Rule"


class PolicyNotFoundError(NotFoundError):
    entity = "SLA policy"


class TeamNotFoundError(NotFoundError):
    entity = "Team"


class PolicyConflictError(ITSMError):
    """Raised when a second enabled SLA policy is added for one priority."""
    pass


class PermissionDeniedError(ITSMError):
    """Raised when a non-admin calls an admin operation."""
    pass


class SessionExpiredError(ITSMError):
    """Raised when the caller's session has run out."""
    pass


class DuplicateTeamError(ITSMError):
    """Raised when a team name is already taken."""
    pass
