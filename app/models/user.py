from typing import ClassVar, Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .record import Record
from .team import TeamRole


class TeamMembership(BaseModel):
    """The team a user belongs to and the role they hold there."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    team_id: str
    role: TeamRole


class User(Record):
    collection: ClassVar[str] = "users"

    id: str
    name: str = ""
    email: str = ""
    team_membership: Optional[TeamMembership] = None
