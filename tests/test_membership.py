import pytest

from app.errors import (
    AlreadyMember,
    CannotKickPresident,
    Conflict,
    ContentionError,
    NotAMember,
    PartialFailureError,
    Unauthorized,
    ValidationError,
)
from app.models import TeamNameClaim, TeamRole
from app.services.context import ActorContext


def as_user(user_id):
    return ActorContext(user_id=user_id)


async def seed_reds(seed):
    """a president, b vice president, c captain, d player."""
    return await seed.team("reds", ["a", "b", "c", "d"], vice_president="b", captains=["c"], name="Reds")


# ---------- Creation ----------

@pytest.mark.asyncio
async def test_create_team_makes_founder_president(membership, seed):
    await seed.user("e")

    team = await membership.create_team(as_user("e"), "  Blues ", description="Sunday league")

    assert team.name == "Blues"
    assert team.president_id == "e"
    assert team.roster_ids == ["e"]
    stored = await seed.load_team(team.id)
    assert stored == team
    user = await seed.load_user("e")
    assert user.team_membership.team_id == team.id
    assert user.team_membership.role is TeamRole.PRESIDENT


@pytest.mark.asyncio
async def test_create_team_name_is_unique_ignoring_case(membership, seed):
    await seed_reds(seed)
    await seed.user("e")

    with pytest.raises(Conflict):
        await membership.create_team(as_user("e"), " REDS ")

    user = await seed.load_user("e")
    assert user.team_membership is None


@pytest.mark.asyncio
async def test_create_team_refuses_existing_member(membership, seed, flaky_store):
    await seed_reds(seed)

    with pytest.raises(AlreadyMember):
        await membership.create_team(as_user("d"), "Blues")
    assert flaky_store.writes == []


@pytest.mark.asyncio
async def test_create_team_discarded_when_founder_joins_elsewhere(membership, seed, store, flaky_store):
    await seed_reds(seed)
    await seed.user("e")

    async def join_reds_first(path):
        if path.startswith("teams/"):
            await seed.user("e", "reds", TeamRole.PLAYER)

    flaky_store.before_write = join_reds_first

    with pytest.raises(AlreadyMember):
        await membership.create_team(as_user("e"), "Blues")

    assert await store.query("teams", "name", "Blues") == []
    assert await store.get(TeamNameClaim.path_for("blues")) is None
    assert (await seed.load_user("e")).team_membership.team_id == "reds"


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["", "   ", "x" * 51])
async def test_create_team_validates_name(membership, seed, name):
    await seed.user("e")
    with pytest.raises(ValidationError):
        await membership.create_team(as_user("e"), name)


@pytest.mark.asyncio
async def test_create_team_withdraws_founders_pending_requests(membership, admission, seed, records):
    await seed_reds(seed)
    await seed.user("e")
    await admission.create_join_request(as_user("e"), "reds")

    await membership.create_team(as_user("e"), "Blues")

    assert await records.pending_requests("userId", "e") == []


# ---------- Leaving ----------

@pytest.mark.asyncio
async def test_president_leaving_hands_over_to_vice_president(membership, seed, hub):
    await seed_reds(seed)

    result = await membership.leave_team(as_user("a"))

    assert result.successor_id == "b"
    assert not result.team_deleted
    team = await seed.load_team("reds")
    assert team.president_id == "b"
    assert team.vice_president_id is None
    assert team.captain_ids == ["c"]
    assert team.roster_ids == ["b", "c", "d"]

    assert (await seed.load_user("a")).team_membership is None
    assert (await seed.load_user("b")).team_membership.role is TeamRole.PRESIDENT
    assert (await seed.load_user("c")).team_membership.role is TeamRole.CAPTAIN
    assert hub.current_team("reds").value == team


@pytest.mark.asyncio
async def test_president_leaving_without_vice_president_promotes_first_captain(membership, seed):
    await seed.team("reds", ["a", "b", "c", "d"], captains=["d", "c"])

    result = await membership.leave_team(as_user("a"))

    assert result.successor_id == "c"
    team = await seed.load_team("reds")
    assert team.captain_ids == ["d"]


@pytest.mark.asyncio
async def test_president_leaving_without_leaders_promotes_earliest_member(membership, seed):
    await seed.team("reds", ["a", "b", "c"])

    result = await membership.leave_team(as_user("a"))

    assert result.successor_id == "b"
    assert (await seed.load_team("reds")).roster_ids == ["b", "c"]


@pytest.mark.asyncio
async def test_president_leaving_hands_over_to_chosen_member(membership, seed):
    await seed_reds(seed)

    result = await membership.leave_team(as_user("a"), successor_id="d")

    assert result.successor_id == "d"
    team = await seed.load_team("reds")
    assert team.president_id == "d"
    assert team.vice_president_id == "b"
    assert team.captain_ids == ["c"]
    assert team.roster_ids == ["b", "c", "d"]
    assert (await seed.load_user("a")).team_membership is None
    assert (await seed.load_user("d")).team_membership.role is TeamRole.PRESIDENT


@pytest.mark.asyncio
async def test_chosen_captain_loses_captaincy_on_taking_over(membership, seed):
    await seed_reds(seed)

    await membership.leave_team(as_user("a"), successor_id="c")

    team = await seed.load_team("reds")
    assert team.president_id == "c"
    assert team.captain_ids == []


@pytest.mark.asyncio
@pytest.mark.parametrize("actor, successor, error", [
    ("a", "a", ValidationError),
    ("a", "e", NotAMember),
    ("b", "d", Unauthorized),
])
async def test_chosen_successor_is_validated(membership, seed, flaky_store, actor, successor, error):
    await seed_reds(seed)
    await seed.user("e")

    with pytest.raises(error):
        await membership.leave_team(as_user(actor), successor_id=successor)

    assert flaky_store.writes == []
    assert (await seed.load_team("reds")).roster_ids == ["a", "b", "c", "d"]


@pytest.mark.asyncio
async def test_chosen_successor_profile_failure_reports_sync_membership(membership, seed, flaky_store):
    await seed_reds(seed)
    flaky_store.fail("users/d")

    with pytest.raises(PartialFailureError) as info:
        await membership.leave_team(as_user("a"), successor_id="d")

    assert info.value.user_ids == ["d"]
    assert info.value.retry_path == "sync_membership"
    assert (await seed.load_team("reds")).president_id == "d"


@pytest.mark.asyncio
async def test_player_leaving_keeps_leadership(membership, seed):
    await seed_reds(seed)

    result = await membership.leave_team(as_user("d"))

    assert result.successor_id is None
    team = await seed.load_team("reds")
    assert team.president_id == "a"
    assert team.roster_ids == ["a", "b", "c"]
    assert (await seed.load_user("d")).team_membership is None


@pytest.mark.asyncio
async def test_last_member_leaving_deletes_team_and_frees_name(membership, seed, store, hub):
    await seed.team("solo", ["x"], name="Solo")

    result = await membership.leave_team(as_user("x"))

    assert result.team_deleted
    assert await seed.load_team("solo") is None
    assert await store.get(TeamNameClaim.path_for("solo")) is None
    assert (await seed.load_user("x")).team_membership is None
    assert hub.current_team("solo").value is None

    team = await membership.create_team(as_user("x"), "Solo")
    assert team.president_id == "x"


@pytest.mark.asyncio
async def test_leave_without_membership(membership, seed):
    await seed.user("e")
    with pytest.raises(NotAMember):
        await membership.leave_team(as_user("e"))


@pytest.mark.asyncio
async def test_leave_clears_membership_of_deleted_team(membership, seed):
    await seed.user("z", "gone", TeamRole.PLAYER)

    result = await membership.leave_team(as_user("z"))

    assert result.team is None
    assert (await seed.load_user("z")).team_membership is None


@pytest.mark.asyncio
async def test_failed_profile_write_reports_finish_leave(membership, seed, flaky_store):
    await seed_reds(seed)
    flaky_store.fail("users/a")

    with pytest.raises(PartialFailureError) as info:
        await membership.leave_team(as_user("a"))

    assert info.value.user_ids == ["a"]
    assert info.value.retry_path == "finish_leave"
    assert info.value.team_id == "reds"
    # The team record is authoritative
    team = await seed.load_team("reds")
    assert team.president_id == "b"
    assert (await seed.load_user("b")).team_membership.role is TeamRole.PRESIDENT
    assert (await seed.load_user("a")).team_membership.team_id == "reds"

    flaky_store.heal()
    assert await membership.finish_leave(as_user("a")) is True
    assert await membership.finish_leave(as_user("a")) is False
    assert (await seed.load_user("a")).team_membership is None


@pytest.mark.asyncio
async def test_transient_profile_failure_is_retried(membership, seed, flaky_store):
    await seed_reds(seed)
    flaky_store.fail("users/d", times=2)

    await membership.leave_team(as_user("d"))

    assert (await seed.load_user("d")).team_membership is None


@pytest.mark.asyncio
async def test_finish_leave_refuses_current_member(membership, seed):
    await seed_reds(seed)
    with pytest.raises(Conflict):
        await membership.finish_leave(as_user("d"))


@pytest.mark.asyncio
async def test_leave_gives_up_under_sustained_contention(membership, seed, store, flaky_store, records):
    await seed_reds(seed)

    async def bump_team_version(path):
        if path == "teams/reds":
            snapshot = await store.get(path)
            await store.set(path, snapshot.data)

    flaky_store.before_write = bump_team_version

    with pytest.raises(ContentionError):
        await membership.leave_team(as_user("d"))

    assert flaky_store.writes.count("teams/reds") == records.team_write_attempts
    assert "d" in (await seed.load_team("reds")).roster_ids
    assert (await seed.load_user("d")).team_membership.team_id == "reds"


@pytest.mark.asyncio
async def test_leave_retries_after_one_conflicting_write(membership, seed, store, flaky_store):
    await seed_reds(seed)
    bumped = []

    async def bump_once(path):
        if path == "teams/reds" and not bumped:
            bumped.append(path)
            snapshot = await store.get(path)
            await store.set(path, snapshot.data)

    flaky_store.before_write = bump_once

    await membership.leave_team(as_user("d"))

    assert (await seed.load_team("reds")).roster_ids == ["a", "b", "c"]


# ---------- Kicking ----------

@pytest.mark.asyncio
async def test_vice_president_kicks_player(membership, seed):
    await seed_reds(seed)

    result = await membership.kick_member(as_user("b"), "d")

    assert result.removed_user_id == "d"
    assert result.team.roster_ids == ["a", "b", "c"]
    assert (await seed.load_user("d")).team_membership is None


@pytest.mark.asyncio
async def test_kicking_captain_clears_captaincy(membership, seed):
    await seed_reds(seed)

    result = await membership.kick_member(as_user("a"), "c")

    assert result.team.captain_ids == []


@pytest.mark.asyncio
@pytest.mark.parametrize("actor", ["c", "d"])
async def test_non_leader_cannot_kick(membership, seed, flaky_store, actor):
    await seed_reds(seed)

    with pytest.raises(Unauthorized):
        await membership.kick_member(as_user(actor), "d" if actor == "c" else "c")

    assert flaky_store.writes == []
    assert (await seed.load_team("reds")).roster_ids == ["a", "b", "c", "d"]


@pytest.mark.asyncio
async def test_president_cannot_be_kicked(membership, seed):
    await seed_reds(seed)
    with pytest.raises(CannotKickPresident):
        await membership.kick_member(as_user("b"), "a")


@pytest.mark.asyncio
async def test_kick_requires_target_on_team(membership, seed):
    await seed_reds(seed)
    await seed.user("e")
    with pytest.raises(NotAMember):
        await membership.kick_member(as_user("a"), "e")


@pytest.mark.asyncio
async def test_leader_cannot_kick_self(membership, seed):
    await seed_reds(seed)
    with pytest.raises(ValidationError):
        await membership.kick_member(as_user("b"), "b")


@pytest.mark.asyncio
async def test_kick_with_failed_profile_write_can_be_finished(membership, seed, flaky_store):
    await seed_reds(seed)
    flaky_store.fail("users/d")

    with pytest.raises(PartialFailureError) as info:
        await membership.kick_member(as_user("a"), "d")
    assert info.value.retry_path == "finish_leave"

    flaky_store.heal()
    assert await membership.finish_leave(as_user("a"), "d") is True
    assert (await seed.load_user("d")).team_membership is None


# ---------- Details and repair ----------

@pytest.mark.asyncio
async def test_leaders_edit_team_details(membership, seed):
    await seed_reds(seed)

    team = await membership.update_team_details(as_user("b"), description=" Est. 1990 ", location="Leeds")

    assert team.description == "Est. 1990"
    assert team.location == "Leeds"
    assert (await seed.load_team("reds")).location == "Leeds"


@pytest.mark.asyncio
async def test_players_cannot_edit_team_details(membership, seed):
    await seed_reds(seed)
    with pytest.raises(Unauthorized):
        await membership.update_team_details(as_user("d"), description="ours now")


@pytest.mark.asyncio
async def test_sync_membership_restores_role_from_team(membership, seed):
    await seed_reds(seed)
    await seed.user("c")

    restored = await membership.sync_membership(as_user("a"), "c", "reds")

    assert restored.role is TeamRole.CAPTAIN
    assert (await seed.load_user("c")).team_membership == restored


@pytest.mark.asyncio
async def test_current_team(membership, seed):
    await seed_reds(seed)
    await seed.user("e")

    assert (await membership.current_team(as_user("c"))).id == "reds"
    assert await membership.current_team(as_user("e")) is None
    assert (await membership.members("reds"))["b"] is TeamRole.VICE_PRESIDENT
