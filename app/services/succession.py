from typing import Iterator

from ..errors import NoSuccessorAvailable
from ..models import Team


def _candidates(team: Team, departing_id: str) -> Iterator[str]:
    if team.vice_president_id:
        yield team.vice_president_id

    # Captains in the order they joined the roster, not the order they were named
    captains = set(team.captain_ids)
    for user_id in team.roster_ids:
        if user_id in captains:
            yield user_id

    yield from team.roster_ids


def resolve_successor(team: Team, departing_id: str) -> str:
    """
    Pick the member who becomes president when ``departing_id`` leaves.

    Priority: vice president, then the earliest-joined captain, then the
    earliest-joined remaining member. Pure and deterministic.
    """
    for user_id in _candidates(team, departing_id):
        if user_id != departing_id:
            return user_id

    raise NoSuccessorAvailable(f"Team {team.id} has no member left to take over from {departing_id}")
