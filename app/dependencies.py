from typing import Optional
from fastapi import Request, Depends, HTTPException, status

from .config import USER_ID_HEADER
from .database import engine
from .models.user import User
from .store import RosterStore, SqlRosterStore
from .services.context import ActorContext
from .services.join_requests import JoinRequestAdmission
from .services.membership import MembershipService
from .services.records import TeamRecords
from .services.roles import RoleChangeService
from .services.streams import StateHub


def get_store() -> RosterStore:
    """Dependency for the roster store."""
    return SqlRosterStore(engine)


def get_hub(request: Request) -> StateHub:
    return request.app.state.hub


def get_records(
    store: RosterStore = Depends(get_store),
    hub: StateHub = Depends(get_hub)
) -> TeamRecords:
    return TeamRecords(store, hub)


def get_membership_service(records: TeamRecords = Depends(get_records)) -> MembershipService:
    return MembershipService(records)


def get_role_service(records: TeamRecords = Depends(get_records)) -> RoleChangeService:
    return RoleChangeService(records)


def get_admission(records: TeamRecords = Depends(get_records)) -> JoinRequestAdmission:
    return JoinRequestAdmission(records)


async def get_current_user(
    request: Request,
    records: TeamRecords = Depends(get_records)
) -> Optional[User]:
    """Get the calling user from the identity header set by the upstream identity provider."""
    user_id = request.headers.get(USER_ID_HEADER)
    if not user_id:
        return None

    found = await records.find_user(user_id)
    return found[0] if found else None


async def require_user(
    current_user: Optional[User] = Depends(get_current_user)
) -> User:
    """Require a known user."""
    if not current_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return current_user


async def get_actor(current_user: User = Depends(require_user)) -> ActorContext:
    """The explicit context passed into every governance call."""
    return ActorContext(user_id=current_user.id)
