from typing import List, Optional, Sequence


class TeamError(Exception):
    """Base class for every failure a governance operation reports to its caller."""
    kind = "team_error"
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(TeamError):
    kind = "validation_error"
    status_code = 422


class Unauthorized(TeamError):
    kind = "unauthorized"
    status_code = 403


class NotFound(TeamError):
    kind = "not_found"
    status_code = 404


class Conflict(TeamError):
    kind = "conflict"
    status_code = 409


class AlreadyMember(TeamError):
    kind = "already_member"
    status_code = 409


class NotAMember(TeamError):
    kind = "not_a_member"
    status_code = 404


class CannotKickPresident(TeamError):
    kind = "cannot_kick_president"
    status_code = 409


class NoSuccessorAvailable(TeamError):
    kind = "no_successor_available"
    status_code = 409


class ContentionError(TeamError):
    """Optimistic-concurrency retries on a team record were exhausted."""
    kind = "contention"
    status_code = 503


class PartialFailureError(TeamError):
    """
    The team record was written but one or more dependent user writes were not.

    The team record is authoritative; ``retry_path`` names the idempotent
    operation that repairs each user in ``user_ids``.
    """
    kind = "partial_failure"
    status_code = 202

    def __init__(self, detail: str, team_id: Optional[str], failures: Sequence[tuple]):
        super().__init__(detail)
        self.team_id = team_id
        # (user_id, retry_path) pairs
        self.failures: List[tuple] = list(failures)

    @property
    def user_ids(self) -> List[str]:
        return [user_id for user_id, _ in self.failures]

    @property
    def retry_path(self) -> str:
        paths = {path for _, path in self.failures}
        return paths.pop() if len(paths) == 1 else "sync_membership"
