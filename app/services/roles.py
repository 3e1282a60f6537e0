import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..errors import Conflict, NotAMember, Unauthorized, ValidationError
from ..models import LEADER_ROLES, Team, TeamRole
from .context import ActorContext
from .records import TeamRecords

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleChangeResult:
    team: Team
    # Every member whose role changed, including a displaced vice president
    # or the former president
    changes: Dict[str, Optional[TeamRole]] = field(default_factory=dict)


class RoleChangeService:
    def __init__(self, records: TeamRecords):
        self.records = records

    async def change_role(self, ctx: ActorContext, target_user_id: str, new_role) -> RoleChangeResult:
        """
        Assign ``new_role`` to a member of the caller's team.

        The president may assign any role; handing over PRESIDENT demotes the
        caller to player and cannot be undone by them. A vice president may
        assign VICE_PRESIDENT, CAPTAIN and PLAYER.
        """
        try:
            new_role = TeamRole(new_role)
        except ValueError:
            raise ValidationError(f"Unknown role: {new_role}")

        actor, _ = await self.records.load_user(ctx.user_id)
        if actor.team_membership is None:
            raise Unauthorized("Only team leaders can change roles")
        team_id = actor.team_membership.team_id

        def assign(team: Team) -> Team:
            actor_role = team.role_of(actor.id)
            if new_role is TeamRole.PRESIDENT:
                if actor_role is not TeamRole.PRESIDENT:
                    raise Unauthorized("Only the president can hand over the presidency")
            elif actor_role not in LEADER_ROLES:
                raise Unauthorized("Only the president or vice president can change roles")

            if not team.is_member(target_user_id):
                raise NotAMember(f"User {target_user_id} is not on this team")
            if target_user_id == team.president_id:
                raise Conflict("The president's role only changes by handing over the presidency")
            return team.with_role(target_user_id, new_role)

        return await asyncio.shield(self._apply(team_id, target_user_id, new_role, assign))

    async def _apply(self, team_id: str, target_user_id: str, new_role: TeamRole, assign) -> RoleChangeResult:
        change = await self.records.mutate_team(team_id, assign)
        if not change.changed:
            return RoleChangeResult(team=change.after)

        if new_role is TeamRole.PRESIDENT:
            logger.info(
                "Presidency of team %s handed from %s to %s",
                team_id, change.before.president_id, target_user_id
            )
        else:
            logger.info("User %s is now %s of team %s", target_user_id, new_role.value, team_id)

        await self.records.sync_users(change, "change_role")
        return RoleChangeResult(team=change.after, changes=change.roles)
