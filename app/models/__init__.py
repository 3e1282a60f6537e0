from .document import Document
from .record import Record
from .team import Team, TeamRole, TeamNameClaim, LEADER_ROLES, role_changes
from .user import User, TeamMembership
from .join_request import JoinRequest, JoinRequestClaim, RequestStatus

__all__ = [
    "Document",
    "Record",
    "Team",
    "TeamRole",
    "TeamNameClaim",
    "LEADER_ROLES",
    "role_changes",
    "User",
    "TeamMembership",
    "JoinRequest",
    "JoinRequestClaim",
    "RequestStatus",
]
