from datetime import datetime, UTC
from enum import Enum
from typing import ClassVar, Optional
from pydantic import Field

from .record import Record


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class JoinRequest(Record):
    """A user's request to join a team, resolved by one of the team's leaders."""
    collection: ClassVar[str] = "teamJoinRequests"

    id: str
    team_id: str
    user_id: str
    status: RequestStatus = RequestStatus.PENDING
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    response_timestamp: Optional[datetime] = None
    response_by: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING

    def resolved(self, status: RequestStatus, responder_id: str) -> "JoinRequest":
        return self.model_copy(update={
            "status": status,
            "response_timestamp": datetime.now(UTC),
            "response_by": responder_id,
        })


class JoinRequestClaim(Record):
    """Marks the single pending request allowed per (team, user) pair."""
    collection: ClassVar[str] = "teamJoinRequestClaims"

    id: str
    request_id: str

    @staticmethod
    def key(team_id: str, user_id: str) -> str:
        return f"{team_id}__{user_id}"

