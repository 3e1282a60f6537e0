"""
Observable current-state values for reactive consumers.

Services publish the latest team, user and pending-request state after each
successful operation. A consumer either reads ``StateStream.value`` or
iterates ``subscribe()`` to receive the current value followed by every
subsequent one.
"""
import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, Generic, Optional, Set, TypeVar

from ..models import User

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StateStream(Generic[T]):
    def __init__(self, initial: Optional[T] = None, on_idle: Optional[Callable[["StateStream"], None]] = None):
        self._value = initial
        self._subscribers: Set[asyncio.Queue] = set()
        # Called when the last subscriber goes away
        self._on_idle = on_idle

    @property
    def value(self) -> Optional[T]:
        return self._value

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, value: Optional[T]) -> None:
        self._value = value
        for queue in self._subscribers:
            # Slow consumers only need the latest state
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(value)

    async def subscribe(self) -> AsyncIterator[Optional[T]]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        queue.put_nowait(self._value)
        self._subscribers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)
            if not self._subscribers and self._on_idle is not None:
                self._on_idle(self)


def is_terminal(value: Any) -> bool:
    """A deleted team, no pending requests, or a user on no team."""
    if value is None or value == []:
        return True
    return isinstance(value, User) and value.team_membership is None


class StateHub:
    """
    Streams keyed by user id (``current_user``) and team id (``current_team``,
    ``pending_join_requests``).

    A stream holding terminal state is dropped as soon as nobody subscribes to
    it; asking for it again starts a fresh stream at ``None`` (``[]`` for
    pending requests).
    """

    def __init__(self):
        self._users: Dict[str, StateStream] = {}
        self._teams: Dict[str, StateStream] = {}
        self._join_requests: Dict[str, StateStream] = {}

    @staticmethod
    def _release(streams: Dict[str, StateStream], key: str, stream: StateStream) -> None:
        if streams.get(key) is stream and not stream.subscriber_count and is_terminal(stream.value):
            del streams[key]
            logger.debug("Dropped idle state stream %s", key)

    def _stream(self, streams: Dict[str, StateStream], key: str, initial: Any = None) -> StateStream:
        if key not in streams:
            streams[key] = StateStream(initial, on_idle=lambda stream: self._release(streams, key, stream))
        return streams[key]

    def _publish(self, streams: Dict[str, StateStream], key: str, value: Any, initial: Any = None) -> None:
        stream = self._stream(streams, key, initial)
        stream.publish(value)
        self._release(streams, key, stream)

    def current_user(self, user_id: str) -> StateStream:
        return self._stream(self._users, user_id)

    def current_team(self, team_id: str) -> StateStream:
        return self._stream(self._teams, team_id)

    def pending_join_requests(self, team_id: str) -> StateStream:
        return self._stream(self._join_requests, team_id, [])

    def publish_user(self, user: User) -> None:
        self._publish(self._users, user.id, user)

    def publish_team(self, team_id: str, team) -> None:
        self._publish(self._teams, team_id, team)
        if team is None:
            logger.debug("Team %s published as deleted", team_id)

    def publish_join_requests(self, team_id: str, requests) -> None:
        self._publish(self._join_requests, team_id, list(requests), [])
