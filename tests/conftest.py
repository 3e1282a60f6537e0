import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, create_engine
from sqlmodel.pool import StaticPool

from main import app
from app.dependencies import get_store
from app.models import Team, TeamMembership, TeamNameClaim, User
from app.services.join_requests import JoinRequestAdmission
from app.services.membership import MembershipService
from app.services.records import TeamRecords
from app.services.roles import RoleChangeService
from app.services.streams import StateHub
from app.store import RosterStore, SqlRosterStore, StoreError


class FlakyStore(RosterStore):
    """Wraps a store and fails writes to chosen paths, or runs a hook before each write."""

    def __init__(self, inner: RosterStore):
        self.inner = inner
        self.failing = {}
        self.before_write = None
        self.writes = []

    def fail(self, path: str, times: int = None):
        """Fail writes to ``path`` ``times`` times (forever when None)."""
        self.failing[path] = times

    def heal(self):
        self.failing.clear()

    async def _write(self, path: str):
        if self.before_write is not None:
            await self.before_write(path)
        if path in self.failing:
            remaining = self.failing[path]
            if remaining is None or remaining > 0:
                if remaining is not None:
                    self.failing[path] = remaining - 1
                raise StoreError(f"injected failure writing {path}")
        self.writes.append(path)

    async def get(self, path):
        return await self.inner.get(path)

    async def set(self, path, data, if_version=None):
        await self._write(path)
        return await self.inner.set(path, data, if_version=if_version)

    async def update(self, path, fields, if_version=None):
        await self._write(path)
        return await self.inner.update(path, fields, if_version=if_version)

    async def delete(self, path, if_version=None):
        await self._write(path)
        return await self.inner.delete(path, if_version=if_version)

    async def query(self, collection, field, value):
        return await self.inner.query(collection, field, value)


class Seeder:
    """Writes users and teams straight into the store, bypassing the services."""

    def __init__(self, store: RosterStore):
        self.store = store

    async def user(self, user_id: str, team_id: str = None, role=None) -> User:
        membership = TeamMembership(team_id=team_id, role=role) if team_id else None
        user = User(
            id=user_id,
            name=user_id.title(),
            email=f"{user_id}@example.com",
            team_membership=membership
        )
        await self.store.set(user.path, user.to_document())
        return user

    async def team(
        self,
        team_id: str,
        roster: list,
        vice_president: str = None,
        captains: tuple = (),
        name: str = None,
    ) -> Team:
        """The first roster entry is the president; every member gets a matching user document."""
        team = Team(
            id=team_id,
            name=name or team_id.title(),
            president_id=roster[0],
            vice_president_id=vice_president,
            captain_ids=list(captains),
            roster_ids=list(roster)
        )
        await self.store.set(team.path, team.to_document())
        claim = TeamNameClaim(id=TeamNameClaim.key(team.name), team_id=team.id)
        await self.store.set(claim.path, claim.to_document())
        for user_id, role in team.roles.items():
            await self.user(user_id, team.id, role)
        return team

    async def load_team(self, team_id: str):
        snapshot = await self.store.get(Team.path_for(team_id))
        return Team.from_document(snapshot.data) if snapshot else None

    async def load_user(self, user_id: str) -> User:
        snapshot = await self.store.get(User.path_for(user_id))
        return User.from_document(snapshot.data)


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="store")
def store_fixture(engine):
    return SqlRosterStore(engine)


@pytest.fixture(name="flaky_store")
def flaky_store_fixture(store):
    return FlakyStore(store)


@pytest.fixture(name="seed")
def seed_fixture(store):
    return Seeder(store)


@pytest.fixture(name="hub")
def hub_fixture():
    return StateHub()


@pytest.fixture(name="records")
def records_fixture(flaky_store, hub):
    return TeamRecords(flaky_store, hub, team_write_backoff=0)


@pytest.fixture(name="membership")
def membership_fixture(records):
    return MembershipService(records)


@pytest.fixture(name="roles")
def roles_fixture(records):
    return RoleChangeService(records)


@pytest.fixture(name="admission")
def admission_fixture(records):
    return JoinRequestAdmission(records)


@pytest.fixture(name="client")
def client_fixture(store):
    def get_store_override():
        return store

    app.dependency_overrides[get_store] = get_store_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
