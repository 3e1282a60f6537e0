"""
Join request lifecycle.

    PENDING --approve--> APPROVED
    PENDING --reject---> REJECTED
    PENDING --cancel---> (deleted)

A claim document keyed by (team, user) guarantees at most one pending request
per pair; it is created conditionally with the request and removed when the
request leaves PENDING.
"""
import asyncio
import logging
from typing import List, Tuple
from uuid import uuid4

from ..errors import AlreadyMember, Conflict, NotFound, PartialFailureError, TeamError, Unauthorized
from ..models import JoinRequest, JoinRequestClaim, RequestStatus, Team, TeamRole
from ..store import StoreError, VersionConflict
from .context import ActorContext
from .records import SYNC_MEMBERSHIP, TeamRecords

logger = logging.getLogger(__name__)


class JoinRequestAdmission:
    def __init__(self, records: TeamRecords):
        self.records = records
        self.store = records.store

    # ---------- Queries ----------

    async def pending_for_team(self, ctx: ActorContext, team_id: str) -> List[JoinRequest]:
        team, _ = await self.records.load_team(team_id)
        self._require_leader(team, ctx.user_id)
        requests = await self.records.pending_requests("teamId", team_id)
        self.records.hub.publish_join_requests(team_id, requests)
        return requests

    async def pending_for_user(self, ctx: ActorContext) -> List[JoinRequest]:
        return await self.records.pending_requests("userId", ctx.user_id)

    # ---------- Transitions ----------

    async def create_join_request(self, ctx: ActorContext, team_id: str) -> JoinRequest:
        user, _ = await self.records.load_user(ctx.user_id)
        if user.team_membership is not None:
            raise AlreadyMember("You are already a member of a team")
        team, _ = await self.records.load_team(team_id)

        request = JoinRequest(id=uuid4().hex, team_id=team.id, user_id=user.id)
        return await asyncio.shield(self._file(request))

    async def _file(self, request: JoinRequest) -> JoinRequest:
        await self._claim(request)
        try:
            await self.store.set(request.path, request.to_document(), if_version=0)
        except StoreError:
            await self._release_claim(request)
            raise

        logger.info("User %s asked to join team %s (request %s)", request.user_id, request.team_id, request.id)
        await self.records.publish_pending(request.team_id)
        return request

    async def _claim(self, request: JoinRequest) -> None:
        claim = JoinRequestClaim(id=JoinRequestClaim.key(request.team_id, request.user_id), request_id=request.id)
        try:
            await self.store.set(claim.path, claim.to_document(), if_version=0)
            return
        except VersionConflict:
            pass

        # The pair is claimed; only a live pending request keeps the claim valid
        snapshot = await self.store.get(claim.path)
        if snapshot is not None:
            held_by = await self.records.find_join_request(snapshot.data.get("requestId", ""))
            if held_by is not None and held_by[0].is_pending:
                raise Conflict("You already have a pending request for this team")
        try:
            await self.store.set(claim.path, claim.to_document(), if_version=snapshot.version if snapshot else 0)
        except VersionConflict:
            raise Conflict("You already have a pending request for this team")
        logger.warning("Replaced stale join request claim %s", claim.path)

    async def _release_claim(self, request: JoinRequest) -> None:
        path = JoinRequestClaim.path_for(JoinRequestClaim.key(request.team_id, request.user_id))
        try:
            snapshot = await self.store.get(path)
            if snapshot is not None and snapshot.data.get("requestId") == request.id:
                await self.store.delete(path, if_version=snapshot.version)
        except StoreError:
            logger.exception("Could not release join request claim %s", path)

    async def approve(self, ctx: ActorContext, request_id: str) -> JoinRequest:
        """
        Admit the requester as a player.

        The requester may have joined another team since asking; that is
        checked again now and the roster is left alone if so. The request is
        marked APPROVED only if nobody answered or cancelled it meanwhile;
        otherwise the admission is undone and ``Conflict`` raised.
        """
        request, version = await self._load_pending(request_id)
        team, _ = await self.records.load_team(request.team_id)
        self._require_leader(team, ctx.user_id)

        requester, _ = await self.records.load_user(request.user_id)
        if requester.team_membership is not None:
            await self._withdraw(request)
            raise Conflict("This user has already joined a team")

        return await asyncio.shield(self._admit(ctx.user_id, request, version))

    async def _admit(self, responder_id: str, request: JoinRequest, version: int) -> JoinRequest:
        def add(team: Team) -> Team:
            self._require_leader(team, responder_id)
            return team.with_member(request.user_id)

        change = await self.records.mutate_team(request.team_id, add)

        try:
            written = await self.records.write_membership_with_retries(
                request.user_id, request.team_id, TeamRole.PLAYER, exclusive=True
            )
        except Conflict:
            # Joined elsewhere between our check and our write
            if change.changed:
                await self._undo_admission(request)
            await self._withdraw(request)
            raise

        approved = request.resolved(RequestStatus.APPROVED, responder_id)
        try:
            await self.store.set(approved.path, approved.to_document(), if_version=version)
        except VersionConflict:
            # Rejected or cancelled while the requester was being admitted
            logger.warning("Request %s was answered during approval; admission of %s undone",
                           request.id, request.user_id)
            if change.changed:
                await self._undo_admission(request)
            await self._clear_admitted_membership(request)
            raise Conflict("This request has already been answered")

        await self._release_claim(request)
        logger.info("Request %s approved by %s; %s joined team %s",
                    request.id, responder_id, request.user_id, request.team_id)

        # Other teams' pending requests from this user are moot now
        await self.records.withdraw_pending_requests("userId", request.user_id)
        await self.records.publish_pending(request.team_id)

        if not written:
            raise PartialFailureError(
                "Request approved with warnings: the new member's profile could not be updated",
                request.team_id,
                [(request.user_id, SYNC_MEMBERSHIP)]
            )
        return approved

    async def _undo_admission(self, request: JoinRequest) -> None:
        def remove(team: Team) -> Team:
            if team.role_of(request.user_id) is TeamRole.PLAYER:
                return team.without_member(request.user_id)
            return team

        try:
            await self.records.mutate_team(request.team_id, remove)
        except (StoreError, TeamError):
            logger.exception("Could not take %s back off team %s", request.user_id, request.team_id)

    async def _clear_admitted_membership(self, request: JoinRequest) -> None:
        if not await self.records.write_membership_with_retries(request.user_id, request.team_id, None):
            logger.error(
                "Membership of %s in team %s left behind after an undone approval; finish_leave clears it",
                request.user_id, request.team_id
            )

    async def _withdraw(self, request: JoinRequest) -> None:
        try:
            await self.records.delete_join_request(request)
            await self.records.publish_pending(request.team_id)
        except StoreError:
            logger.exception("Could not withdraw stale join request %s", request.id)

    async def reject(self, ctx: ActorContext, request_id: str) -> JoinRequest:
        request, version = await self._load_pending(request_id)
        team, _ = await self.records.load_team(request.team_id)
        self._require_leader(team, ctx.user_id)

        rejected = request.resolved(RequestStatus.REJECTED, ctx.user_id)
        try:
            await self.store.set(rejected.path, rejected.to_document(), if_version=version)
        except VersionConflict:
            raise Conflict("This request has already been answered")

        await self._release_claim(request)
        logger.info("Request %s rejected by %s", request.id, ctx.user_id)
        await self.records.publish_pending(request.team_id)
        return rejected

    async def cancel(self, ctx: ActorContext, request_id: str) -> None:
        found = await self.records.find_join_request(request_id)
        if found is None:
            raise NotFound(f"Join request {request_id} not found")
        request, version = found

        if request.user_id != ctx.user_id:
            raise Unauthorized("Only the requester can cancel a join request")
        if not request.is_pending:
            raise Conflict("This request has already been answered")

        try:
            deleted = await self.store.delete(request.path, if_version=version)
        except VersionConflict:
            raise Conflict("This request has already been answered")
        if not deleted:
            raise NotFound(f"Join request {request_id} not found")

        await self._release_claim(request)
        logger.info("Request %s cancelled by its requester", request.id)
        await self.records.publish_pending(request.team_id)

    # ---------- Helpers ----------

    async def _load_pending(self, request_id: str) -> Tuple[JoinRequest, int]:
        found = await self.records.find_join_request(request_id)
        if found is None:
            raise NotFound(f"Join request {request_id} not found")
        if not found[0].is_pending:
            raise Conflict("This request has already been answered")
        return found

    @staticmethod
    def _require_leader(team: Team, user_id: str) -> None:
        if not team.is_leader(user_id):
            raise Unauthorized("Only team leaders can manage join requests")
