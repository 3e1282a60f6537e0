"""
Team creation, departures and removals.

Every operation writes the team document first and the affected users'
memberships second, so the team is authoritative whenever a later write
fails. Once the first write is issued the rest of the sequence is shielded
from cancellation of the calling task.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional
from uuid import uuid4

from ..config import TEAM_DESCRIPTION_MAX_LENGTH, TEAM_NAME_MAX_LENGTH
from ..errors import (
    AlreadyMember,
    CannotKickPresident,
    Conflict,
    NotAMember,
    PartialFailureError,
    TeamError,
    Unauthorized,
    ValidationError,
)
from ..models import LEADER_ROLES, Team, TeamMembership, TeamNameClaim, TeamRole
from ..store import StoreError, VersionConflict
from .context import ActorContext
from .records import FINISH_LEAVE, SYNC_MEMBERSHIP, TeamChange, TeamRecords
from .succession import resolve_successor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaveResult:
    team_id: str
    team: Optional[Team]
    successor_id: Optional[str] = None

    @property
    def team_deleted(self) -> bool:
        return self.team is None


@dataclass(frozen=True)
class KickResult:
    team: Team
    removed_user_id: str


def _clean_text(value: Optional[str], label: str, max_length: int) -> str:
    value = (value or "").strip()
    if len(value) > max_length:
        raise ValidationError(f"{label} must be {max_length} characters or less")
    return value


def _check_chosen_successor(team: Team, user_id: str, successor_id: str) -> None:
    if team.president_id != user_id:
        raise Unauthorized("Only the president can choose a successor")
    if successor_id == user_id:
        raise ValidationError("Choose another member as your successor")
    if not team.is_member(successor_id):
        raise NotAMember(f"User {successor_id} is not on this team")


class MembershipService:
    def __init__(self, records: TeamRecords):
        self.records = records
        self.store = records.store

    # ---------- Queries ----------

    async def get_team(self, team_id: str) -> Team:
        team, _ = await self.records.load_team(team_id)
        return team

    async def current_team(self, ctx: ActorContext) -> Optional[Team]:
        """The caller's team according to their membership, or None."""
        user, _ = await self.records.load_user(ctx.user_id)
        self.records.hub.publish_user(user)
        if user.team_membership is None:
            return None

        found = await self.records.find_team(user.team_membership.team_id)
        team = found[0] if found else None
        if team is not None and not team.is_member(user.id):
            team = None
        return team

    async def members(self, team_id: str) -> Dict[str, TeamRole]:
        team = await self.get_team(team_id)
        return team.roles

    # ---------- Creation ----------

    async def create_team(
        self,
        ctx: ActorContext,
        name: str,
        description: str = "",
        location: str = "",
        logo_url: str = "",
    ) -> Team:
        """Create a team with the caller as its president and only member."""
        name = _clean_text(name, "Team name", TEAM_NAME_MAX_LENGTH)
        if not name:
            raise ValidationError("Team name is required")
        description = _clean_text(description, "Description", TEAM_DESCRIPTION_MAX_LENGTH)

        founder, _ = await self.records.load_user(ctx.user_id)
        if founder.team_membership is not None:
            raise AlreadyMember("You are already a member of a team")

        team = Team(
            id=uuid4().hex,
            name=name,
            description=description,
            location=(location or "").strip(),
            logo_url=(logo_url or "").strip(),
            president_id=founder.id,
            roster_ids=[founder.id],
        )
        return await asyncio.shield(self._commit_new_team(team))

    async def _commit_new_team(self, team: Team) -> Team:
        claim = TeamNameClaim(id=TeamNameClaim.key(team.name), team_id=team.id)
        try:
            await self.store.set(claim.path, claim.to_document(), if_version=0)
        except VersionConflict:
            raise Conflict(f"Team name '{team.name}' is already taken")

        try:
            change = await self.records.create_team(team)
        except StoreError:
            await self._release_name(team)
            raise

        try:
            written = await self.records.write_membership_with_retries(
                team.president_id, team.id, TeamRole.PRESIDENT, exclusive=True
            )
        except Conflict:
            # Joined another team after our check; the new team never had a real member
            await self._discard_team(change.after)
            raise AlreadyMember("You are already a member of a team")

        logger.info("Team %s (%r) created by %s", team.id, team.name, team.president_id)
        # A founder cannot also be waiting to join another team
        await self.records.withdraw_pending_requests("userId", team.president_id)
        if not written:
            raise PartialFailureError(
                "Team created, but your profile could not be updated",
                team.id,
                [(team.president_id, SYNC_MEMBERSHIP)]
            )
        return team

    async def _discard_team(self, team: Team) -> None:
        try:
            await self.records.mutate_team(team.id, lambda current: None)
        except (StoreError, TeamError):
            logger.exception("Could not discard abandoned team %s", team.id)
        await self._release_name(team)

    async def _release_name(self, team: Team) -> None:
        path = TeamNameClaim.path_for(TeamNameClaim.key(team.name))
        try:
            snapshot = await self.store.get(path)
            if snapshot is not None and snapshot.data.get("teamId") == team.id:
                await self.store.delete(path, if_version=snapshot.version)
        except StoreError:
            logger.exception("Could not release the name of team %s", team.id)

    async def update_team_details(
        self,
        ctx: ActorContext,
        description: Optional[str] = None,
        location: Optional[str] = None,
        logo_url: Optional[str] = None,
    ) -> Team:
        """Edit the descriptive fields of the caller's team. Leaders only."""
        changes = {}
        if description is not None:
            changes["description"] = _clean_text(description, "Description", TEAM_DESCRIPTION_MAX_LENGTH)
        if location is not None:
            changes["location"] = location.strip()
        if logo_url is not None:
            changes["logo_url"] = logo_url.strip()

        team_id = await self._team_of(ctx)

        def edit(team: Team) -> Team:
            if not team.is_leader(ctx.user_id):
                raise Unauthorized("Only team leaders can edit the team")
            if all(getattr(team, key) == value for key, value in changes.items()):
                return team
            return team.model_copy(update=changes)

        change = await self.records.mutate_team(team_id, edit)
        return change.after

    # ---------- Departures ----------

    async def leave_team(self, ctx: ActorContext, successor_id: Optional[str] = None) -> LeaveResult:
        """
        Take the caller off their team.

        The last member leaving deletes the team. A departing president hands
        over to ``successor_id`` when given, otherwise to the member
        SuccessionResolver picks.
        """
        user, _ = await self.records.load_user(ctx.user_id)
        if user.team_membership is None:
            raise NotAMember("You are not a member of a team")

        return await asyncio.shield(self._leave(user.id, user.team_membership.team_id, successor_id))

    async def _leave(self, user_id: str, team_id: str, chosen_id: Optional[str] = None) -> LeaveResult:
        found = await self.records.find_team(team_id)
        if found is None or not found[0].is_member(user_id):
            # Only the profile still points at the team
            logger.info("User %s left team %s, which no longer lists them", user_id, team_id)
            await self._clear_membership(user_id, team_id)
            return LeaveResult(team_id=team_id, team=found[0] if found else None)

        def depart(team: Team) -> Optional[Team]:
            if not team.is_member(user_id):
                return team
            if chosen_id is not None:
                _check_chosen_successor(team, user_id, chosen_id)
            if team.is_sole_member_team:
                return None
            if team.president_id == user_id:
                successor_id = chosen_id or resolve_successor(team, user_id)
                return team.with_president(successor_id).without_member(user_id)
            return team.without_member(user_id)

        change = await self.records.mutate_team(team_id, depart)
        if not change.changed:
            # Removed by someone else since we looked
            await self._clear_membership(user_id, team_id)
            return LeaveResult(team_id=team_id, team=change.after)

        successor_id = None
        if change.deleted:
            logger.info("Team %s deleted: its last member %s left", team_id, user_id)
            await self._release_team(change.before)
        elif change.before.president_id == user_id:
            successor_id = change.after.president_id
            logger.info("President %s left team %s; %s succeeds", user_id, team_id, successor_id)
        else:
            logger.info("User %s left team %s", user_id, team_id)

        await self.records.sync_users(change, "leave_team")
        return LeaveResult(team_id=team_id, team=change.after, successor_id=successor_id)

    async def _release_team(self, team: Team) -> None:
        await self._release_name(team)
        await self.records.withdraw_pending_requests("teamId", team.id)

    async def kick_member(self, ctx: ActorContext, target_user_id: str) -> KickResult:
        """Remove another member from the caller's team. President or vice president only."""
        actor, _ = await self.records.load_user(ctx.user_id)
        if actor.team_membership is None:
            raise Unauthorized("Only team leaders can remove members")
        team_id = actor.team_membership.team_id

        def remove(team: Team) -> Team:
            if team.role_of(actor.id) not in LEADER_ROLES:
                raise Unauthorized("Only the president or vice president can remove members")
            if target_user_id == team.president_id:
                raise CannotKickPresident("The president cannot be removed from the team")
            if not team.is_member(target_user_id):
                raise NotAMember(f"User {target_user_id} is not on this team")
            if target_user_id == actor.id:
                raise ValidationError("Use leave to remove yourself from the team")
            return team.without_member(target_user_id)

        return await asyncio.shield(self._kick(team_id, target_user_id, remove))

    async def _kick(self, team_id: str, target_user_id: str, remove) -> KickResult:
        change: TeamChange = await self.records.mutate_team(team_id, remove)
        logger.info("User %s removed from team %s", target_user_id, team_id)
        await self.records.sync_users(change, "kick_member")
        return KickResult(team=change.after, removed_user_id=target_user_id)

    # ---------- Repair paths ----------

    async def _clear_membership(self, user_id: str, team_id: str) -> None:
        if not await self.records.write_membership_with_retries(user_id, team_id, None):
            raise PartialFailureError(
                "Left the team, but your profile could not be updated",
                team_id,
                [(user_id, FINISH_LEAVE)]
            )

    async def finish_leave(self, ctx: ActorContext, user_id: Optional[str] = None) -> bool:
        """
        Clear a membership the team no longer backs. Idempotent.

        Returns True when a stale membership was cleared and False when there
        was nothing to do.
        """
        user_id = user_id or ctx.user_id
        user, _ = await self.records.load_user(user_id)
        membership = user.team_membership
        if membership is None:
            return False

        found = await self.records.find_team(membership.team_id)
        if found is not None and found[0].is_member(user_id):
            raise Conflict(f"User {user_id} is still on team {membership.team_id}")

        await self._clear_membership(user_id, membership.team_id)
        return True

    async def sync_membership(self, ctx: ActorContext, user_id: str, team_id: str) -> Optional[TeamMembership]:
        """Rewrite a user's membership from the team record. Idempotent."""
        found = await self.records.find_team(team_id)
        role = found[0].role_of(user_id) if found else None

        if not await self.records.write_membership_with_retries(user_id, team_id, role):
            raise PartialFailureError(
                "Member profile could not be updated",
                team_id,
                [(user_id, SYNC_MEMBERSHIP)]
            )
        logger.debug("Membership of %s in team %s synced by %s", user_id, team_id, ctx.user_id)
        return TeamMembership(team_id=team_id, role=role) if role else None

    async def _team_of(self, ctx: ActorContext) -> str:
        user, _ = await self.records.load_user(ctx.user_id)
        if user.team_membership is None:
            raise NotAMember("You are not a member of a team")
        return user.team_membership.team_id
