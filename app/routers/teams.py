from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..dependencies import get_actor, get_admission, get_membership_service, get_role_service
from ..models import JoinRequest, Team, TeamRole
from ..services.context import ActorContext
from ..services.join_requests import JoinRequestAdmission
from ..services.membership import MembershipService
from ..services.roles import RoleChangeService

router = APIRouter(prefix="/teams", tags=["teams"])


class TeamCreate(BaseModel):
    """Schema for creating a team."""
    name: str
    description: str = ""
    location: str = ""
    logo_url: str = ""


class TeamDetailsUpdate(BaseModel):
    """Schema for editing a team's descriptive fields."""
    description: Optional[str] = None
    location: Optional[str] = None
    logo_url: Optional[str] = None


class LeaveRequest(BaseModel):
    """Schema for leaving a team; a president may name their successor."""
    successor_id: Optional[str] = None


class RoleUpdate(BaseModel):
    """Schema for assigning a role."""
    role: TeamRole


@router.post("", response_model=Team, status_code=status.HTTP_201_CREATED)
async def create_team(
    payload: TeamCreate,
    actor: ActorContext = Depends(get_actor),
    membership: MembershipService = Depends(get_membership_service)
):
    return await membership.create_team(
        actor,
        payload.name,
        description=payload.description,
        location=payload.location,
        logo_url=payload.logo_url
    )


@router.get("/me", response_model=Team)
async def my_team(
    actor: ActorContext = Depends(get_actor),
    membership: MembershipService = Depends(get_membership_service)
):
    team = await membership.current_team(actor)
    if team is None:
        raise HTTPException(status_code=404, detail="You are not a member of a team")
    return team


@router.patch("/me", response_model=Team)
async def update_my_team(
    payload: TeamDetailsUpdate,
    actor: ActorContext = Depends(get_actor),
    membership: MembershipService = Depends(get_membership_service)
):
    return await membership.update_team_details(
        actor,
        description=payload.description,
        location=payload.location,
        logo_url=payload.logo_url
    )


@router.post("/me/leave")
async def leave_team(
    payload: Optional[LeaveRequest] = None,
    actor: ActorContext = Depends(get_actor),
    membership: MembershipService = Depends(get_membership_service)
):
    successor_id = payload.successor_id if payload else None
    result = await membership.leave_team(actor, successor_id=successor_id)
    return {
        "team_id": result.team_id,
        "team_deleted": result.team_deleted,
        "successor_id": result.successor_id
    }


@router.post("/me/finish-leave")
async def finish_leave(
    user_id: Optional[str] = None,
    actor: ActorContext = Depends(get_actor),
    membership: MembershipService = Depends(get_membership_service)
):
    """Clear a membership the team no longer backs; the caller's own unless ``user_id`` is given."""
    cleared = await membership.finish_leave(actor, user_id)
    return {"cleared": cleared}


@router.post("/me/members/{user_id}/kick", response_model=Team)
async def kick_member(
    user_id: str,
    actor: ActorContext = Depends(get_actor),
    membership: MembershipService = Depends(get_membership_service)
):
    result = await membership.kick_member(actor, user_id)
    return result.team


@router.put("/me/members/{user_id}/role")
async def change_role(
    user_id: str,
    payload: RoleUpdate,
    actor: ActorContext = Depends(get_actor),
    roles: RoleChangeService = Depends(get_role_service)
):
    result = await roles.change_role(actor, user_id, payload.role)
    return {
        "team": result.team.to_document(),
        "changes": {
            member_id: role.value if role else None
            for member_id, role in result.changes.items()
        }
    }


@router.get("/{team_id}")
async def team_detail(
    team_id: str,
    membership: MembershipService = Depends(get_membership_service),
    actor: ActorContext = Depends(get_actor)
):
    team = await membership.get_team(team_id)
    return {
        "team": team.to_document(),
        "members": [
            {"user_id": member_id, "role": role.value}
            for member_id, role in team.roles.items()
        ]
    }


@router.post("/{team_id}/members/{user_id}/sync")
async def sync_membership(
    team_id: str,
    user_id: str,
    actor: ActorContext = Depends(get_actor),
    membership: MembershipService = Depends(get_membership_service)
):
    synced = await membership.sync_membership(actor, user_id, team_id)
    return {"team_membership": synced.model_dump(mode="json", by_alias=True) if synced else None}


@router.post("/{team_id}/join-requests", response_model=JoinRequest, status_code=status.HTTP_201_CREATED)
async def create_join_request(
    team_id: str,
    actor: ActorContext = Depends(get_actor),
    admission: JoinRequestAdmission = Depends(get_admission)
):
    return await admission.create_join_request(actor, team_id)


@router.get("/{team_id}/join-requests", response_model=List[JoinRequest])
async def team_join_requests(
    team_id: str,
    actor: ActorContext = Depends(get_actor),
    admission: JoinRequestAdmission = Depends(get_admission)
):
    return await admission.pending_for_team(actor, team_id)
