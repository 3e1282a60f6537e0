from datetime import datetime, UTC
from enum import Enum
from typing import ClassVar, Dict, List, Optional
from pydantic import Field, model_validator

from .record import Record


class TeamRole(str, Enum):
    PLAYER = "PLAYER"
    CAPTAIN = "CAPTAIN"
    VICE_PRESIDENT = "VICE_PRESIDENT"
    PRESIDENT = "PRESIDENT"


LEADER_ROLES = frozenset({TeamRole.PRESIDENT, TeamRole.VICE_PRESIDENT})


class Team(Record):
    """
    A sports team and its leadership.

    ``roster_ids`` holds every member (leaders included) in the order they
    joined. Leadership is stored as the president id, the optional vice
    president id and the captain ids; every other roster member is a player.
    Use ``roles`` / ``role_of`` rather than filtering the id lists by hand.
    """
    collection: ClassVar[str] = "teams"

    id: str
    name: str
    description: str = ""
    president_id: str
    vice_president_id: Optional[str] = None
    captain_ids: List[str] = Field(default_factory=list)
    roster_ids: List[str] = Field(default_factory=list)
    logo_url: str = ""
    location: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _check_leadership(self) -> "Team":
        roster = set(self.roster_ids)
        if not roster:
            raise ValueError("a team must have at least one member")
        if len(roster) != len(self.roster_ids):
            raise ValueError("roster contains duplicate ids")
        if self.president_id not in roster:
            raise ValueError("president must be on the roster")

        vp = self.vice_president_id
        if vp is not None and (vp not in roster or vp == self.president_id):
            raise ValueError("vice president must be a non-president roster member")

        captains = set(self.captain_ids)
        if len(captains) != len(self.captain_ids) or not captains <= roster:
            raise ValueError("captains must be distinct roster members")
        if self.president_id in captains or (vp is not None and vp in captains):
            raise ValueError("president and vice president cannot also be captains")
        return self

    @property
    def roles(self) -> Dict[str, TeamRole]:
        """Role of every member, in roster order."""
        return {user_id: self.role_of(user_id) for user_id in self.roster_ids}

    def role_of(self, user_id: str) -> Optional[TeamRole]:
        if user_id not in self.roster_ids:
            return None
        if user_id == self.president_id:
            return TeamRole.PRESIDENT
        if user_id == self.vice_president_id:
            return TeamRole.VICE_PRESIDENT
        if user_id in self.captain_ids:
            return TeamRole.CAPTAIN
        return TeamRole.PLAYER

    def is_member(self, user_id: str) -> bool:
        return user_id in self.roster_ids

    def is_leader(self, user_id: str) -> bool:
        return self.role_of(user_id) in LEADER_ROLES

    @property
    def is_sole_member_team(self) -> bool:
        return len(self.roster_ids) == 1

    def _replace(self, **changes) -> "Team":
        # model_copy() skips validation; rebuild so the invariants are rechecked
        return Team.model_validate({**self.model_dump(), **changes})

    def with_member(self, user_id: str) -> "Team":
        """Add a user to the roster as a player."""
        if user_id in self.roster_ids:
            return self
        return self._replace(roster_ids=[*self.roster_ids, user_id])

    def without_member(self, user_id: str) -> "Team":
        """Remove a non-president user from every roster and leadership field."""
        if user_id == self.president_id:
            raise ValueError("the president must be replaced before leaving the roster")
        return self._replace(
            vice_president_id=None if self.vice_president_id == user_id else self.vice_president_id,
            captain_ids=[c for c in self.captain_ids if c != user_id],
            roster_ids=[m for m in self.roster_ids if m != user_id],
        )

    def with_president(self, user_id: str) -> "Team":
        """
        Make a roster member the president.

        The previous president keeps their roster spot as a player; any
        captain or vice president flag the new president held is cleared.
        """
        if user_id not in self.roster_ids:
            raise ValueError(f"user {user_id} is not on the roster")
        return self._replace(
            president_id=user_id,
            vice_president_id=None if self.vice_president_id == user_id else self.vice_president_id,
            captain_ids=[c for c in self.captain_ids if c != user_id],
        )

    def with_role(self, user_id: str, role: TeamRole) -> "Team":
        """Assign a role to a roster member. A displaced vice president becomes a captain."""
        if self.role_of(user_id) == role:
            return self
        if role is TeamRole.PRESIDENT:
            return self.with_president(user_id)
        if user_id not in self.roster_ids:
            raise ValueError(f"user {user_id} is not on the roster")
        if user_id == self.president_id:
            raise ValueError("the president's role only changes through a transfer")

        captains = [c for c in self.captain_ids if c != user_id]
        vp = None if self.vice_president_id == user_id else self.vice_president_id

        if role is TeamRole.VICE_PRESIDENT:
            if vp is not None:
                captains.append(vp)
            vp = user_id
        elif role is TeamRole.CAPTAIN:
            captains.append(user_id)

        return self._replace(vice_president_id=vp, captain_ids=captains)


def role_changes(before: Optional[Team], after: Optional[Team]) -> Dict[str, Optional[TeamRole]]:
    """
    Users whose role differs between two states of the same team.

    A value of ``None`` means the user is no longer on the team (or the team
    is gone). Ordering follows the new roster first, then removed members.
    """
    old_roles = before.roles if before else {}
    new_roles = after.roles if after else {}

    changes: Dict[str, Optional[TeamRole]] = {}
    for user_id, role in new_roles.items():
        if old_roles.get(user_id) != role:
            changes[user_id] = role
    for user_id in old_roles:
        if user_id not in new_roles:
            changes[user_id] = None
    return changes


class TeamNameClaim(Record):
    """Reserves a team name; keyed by the case-folded name."""
    collection: ClassVar[str] = "teamNames"

    id: str
    team_id: str

    @staticmethod
    def key(name: str) -> str:
        return name.strip().casefold()
