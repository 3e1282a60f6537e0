from dataclasses import dataclass


@dataclass(frozen=True)
class ActorContext:
    """Who is calling a governance operation. Passed explicitly into every service call."""
    user_id: str
