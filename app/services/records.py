"""
Reads and writes shared by the governance services.

Team documents are the serialization point: every mutation reads the team and
its version, computes the new state, and writes it back conditionally,
retrying with exponential backoff when another writer got there first.
User memberships are derived from the team and written afterwards, each with
a bounded number of silent retries.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..config import MEMBERSHIP_WRITE_ATTEMPTS, TEAM_WRITE_ATTEMPTS, TEAM_WRITE_BACKOFF_SECONDS
from ..errors import Conflict, ContentionError, NotFound, PartialFailureError
from ..models import (
    JoinRequest,
    JoinRequestClaim,
    Team,
    TeamMembership,
    TeamRole,
    User,
    role_changes,
)
from ..store import RosterStore, StoreError, VersionConflict
from .streams import StateHub

logger = logging.getLogger(__name__)

FINISH_LEAVE = "finish_leave"
SYNC_MEMBERSHIP = "sync_membership"


@dataclass
class TeamChange:
    """Outcome of one committed (or skipped) team mutation."""
    team_id: str
    before: Optional[Team]
    after: Optional[Team]
    roles: Dict[str, Optional[TeamRole]] = field(init=False)

    def __post_init__(self):
        self.roles = role_changes(self.before, self.after) if self.changed else {}

    @property
    def changed(self) -> bool:
        return self.before is not self.after

    @property
    def deleted(self) -> bool:
        return self.before is not None and self.after is None


def membership_fields(membership: Optional[TeamMembership]) -> dict:
    value = membership.model_dump(mode="json", by_alias=True) if membership else None
    return {"teamMembership": value}


class TeamRecords:
    def __init__(
        self,
        store: RosterStore,
        hub: Optional[StateHub] = None,
        team_write_attempts: int = TEAM_WRITE_ATTEMPTS,
        team_write_backoff: float = TEAM_WRITE_BACKOFF_SECONDS,
        membership_write_attempts: int = MEMBERSHIP_WRITE_ATTEMPTS,
    ):
        self.store = store
        self.hub = hub or StateHub()
        self.team_write_attempts = team_write_attempts
        self.team_write_backoff = team_write_backoff
        self.membership_write_attempts = membership_write_attempts

    # ---------- Reads ----------

    async def find_user(self, user_id: str) -> Optional[Tuple[User, int]]:
        snapshot = await self.store.get(User.path_for(user_id))
        if snapshot is None:
            return None
        return User.from_document(snapshot.data), snapshot.version

    async def load_user(self, user_id: str) -> Tuple[User, int]:
        found = await self.find_user(user_id)
        if found is None:
            raise NotFound(f"User {user_id} not found")
        return found

    async def find_team(self, team_id: str) -> Optional[Tuple[Team, int]]:
        snapshot = await self.store.get(Team.path_for(team_id))
        if snapshot is None:
            return None
        return Team.from_document(snapshot.data), snapshot.version

    async def load_team(self, team_id: str) -> Tuple[Team, int]:
        found = await self.find_team(team_id)
        if found is None:
            raise NotFound(f"Team {team_id} not found")
        return found

    async def find_join_request(self, request_id: str) -> Optional[Tuple[JoinRequest, int]]:
        snapshot = await self.store.get(JoinRequest.path_for(request_id))
        if snapshot is None:
            return None
        return JoinRequest.from_document(snapshot.data), snapshot.version

    async def pending_requests(self, field_name: str, value: str) -> List[JoinRequest]:
        snapshots = await self.store.query(JoinRequest.collection, field_name, value)
        requests = [JoinRequest.from_document(s.data) for s in snapshots]
        return [r for r in requests if r.is_pending]

    # ---------- Team writes ----------

    async def mutate_team(self, team_id: str, change: Callable[[Team], Optional[Team]]) -> TeamChange:
        """
        Apply ``change`` to the current team and write the result conditionally.

        ``change`` returns the new team, ``None`` to delete it, or the team it
        was given to skip the write. It is re-run against fresh state after
        every version conflict and may raise to abort.
        """
        for attempt in range(self.team_write_attempts):
            team, version = await self.load_team(team_id)
            updated = change(team)
            if updated is team:
                return TeamChange(team_id, team, team)

            try:
                if updated is None:
                    if not await self.store.delete(team.path, if_version=version):
                        raise VersionConflict(team.path, version, None)
                else:
                    await self.store.set(team.path, updated.to_document(), if_version=version)
            except VersionConflict as exc:
                if attempt + 1 < self.team_write_attempts:
                    delay = self.team_write_backoff * (2 ** attempt)
                    logger.warning("Team %s changed concurrently (%s); retrying in %.3fs", team_id, exc, delay)
                    await asyncio.sleep(delay)
                continue

            self.hub.publish_team(team_id, updated)
            return TeamChange(team_id, team, updated)

        logger.error("Giving up on team %s after %d conflicting writes", team_id, self.team_write_attempts)
        raise ContentionError(f"Team {team_id} is being changed by someone else, try again")

    async def create_team(self, team: Team) -> TeamChange:
        await self.store.set(team.path, team.to_document(), if_version=0)
        self.hub.publish_team(team.id, team)
        return TeamChange(team.id, None, team)

    # ---------- User writes ----------

    async def write_membership(
        self,
        user_id: str,
        team_id: str,
        role: Optional[TeamRole],
        exclusive: bool = False,
    ) -> bool:
        """
        Mirror ``role`` in ``team_id`` onto the user's document, once.

        A ``None`` role clears the membership, but only while it still points
        at ``team_id``. With ``exclusive`` a user whose membership points at a
        different team is refused with ``Conflict``. Returns False when nothing
        needed writing.
        """
        found = await self.find_user(user_id)
        if found is None:
            logger.warning("User %s has no document; membership of team %s not mirrored", user_id, team_id)
            return False
        user, version = found

        current = user.team_membership
        if role is None:
            if current is None or current.team_id != team_id:
                return False
            membership = None
        else:
            if exclusive and current is not None and current.team_id != team_id:
                raise Conflict(f"User {user_id} already belongs to another team")
            membership = TeamMembership(team_id=team_id, role=role)
            if current == membership:
                return False

        await self.store.update(user.path, membership_fields(membership), if_version=version)
        self.hub.publish_user(user.model_copy(update={"team_membership": membership}))
        return True

    async def write_membership_with_retries(
        self,
        user_id: str,
        team_id: str,
        role: Optional[TeamRole],
        exclusive: bool = False,
    ) -> bool:
        for attempt in range(1, self.membership_write_attempts + 1):
            try:
                await self.write_membership(user_id, team_id, role, exclusive)
                return True
            except StoreError as exc:
                logger.warning(
                    "Membership write for user %s failed (attempt %d/%d): %s",
                    user_id, attempt, self.membership_write_attempts, exc
                )
        return False

    async def sync_users(self, change: TeamChange, operation: str) -> None:
        """Write the membership of every user whose role ``change`` altered, Team first then users."""
        failures = []
        for user_id, role in change.roles.items():
            if not await self.write_membership_with_retries(user_id, change.team_id, role):
                failures.append((user_id, FINISH_LEAVE if role is None else SYNC_MEMBERSHIP))

        if failures:
            logger.error(
                "%s on team %s committed but %d membership write(s) failed: %s",
                operation, change.team_id, len(failures), failures
            )
            raise PartialFailureError(
                f"{operation} completed with warnings: some member profiles could not be updated",
                change.team_id,
                failures
            )

    # ---------- Join request cleanup ----------

    async def delete_join_request(self, request: JoinRequest) -> None:
        await self.store.delete(request.path)
        await self.store.delete(JoinRequestClaim.path_for(JoinRequestClaim.key(request.team_id, request.user_id)))

    async def publish_pending(self, team_id: str) -> None:
        self.hub.publish_join_requests(team_id, await self.pending_requests("teamId", team_id))

    async def withdraw_pending_requests(self, field_name: str, value: str, keep: Optional[str] = None) -> int:
        """
        Delete pending join requests matching ``field_name == value``.

        Best effort: failures are logged, never raised, because the caller's
        own writes have already committed.
        """
        try:
            requests = [r for r in await self.pending_requests(field_name, value) if r.id != keep]
            for request in requests:
                await self.delete_join_request(request)
            for team_id in {r.team_id for r in requests}:
                await self.publish_pending(team_id)
        except StoreError:
            logger.exception("Could not withdraw pending join requests where %s=%s", field_name, value)
            return 0

        if requests:
            logger.info("Withdrew %d pending join request(s) where %s=%s", len(requests), field_name, value)
        return len(requests)