"""Live session records and the registry that owns them.

Sessions are keyed by a monotonically assigned integer id. Iteration order
is admission order, which fixes the order of broadcast delivery and of
presence entries.
"""
import itertools
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from .channel import Channel
from .schemas import PresenceUser


@dataclass
class Session:
    """A client connection bound to a caller identity.

    Attributes:
        session_id: Registry key, unique for the coordinator's lifetime.
        channel: The client's channel, owned exclusively by this session.
        user_id: Caller's stable user id. Not unique across sessions.
        username: Caller's display name.
        quit: True once the session's leave has been announced on purpose,
            so the close path must not announce it again.
    """
    session_id: int
    channel: Channel
    user_id: str
    username: str
    quit: bool = False

    def to_presence(self) -> PresenceUser:
        return PresenceUser(userId=self.user_id, username=self.username)


class SessionRegistry:
    """Ordered map of session id to live Session."""

    def __init__(self) -> None:
        self._sessions: Dict[int, Session] = {}
        self._ids = itertools.count(1)

    def register(self, channel: Channel, user_id: str, username: str) -> Session:
        session = Session(
            session_id=next(self._ids),
            channel=channel,
            user_id=user_id,
            username=username,
        )
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: int) -> Optional[Session]:
        return self._sessions.get(session_id)

    def remove(self, session_id: int) -> Optional[Session]:
        """Remove a session. Returns None if it was already gone."""
        return self._sessions.pop(session_id, None)

    def presence(self) -> List[PresenceUser]:
        return [session.to_presence() for session in self._sessions.values()]

    def __iter__(self) -> Iterator[Session]:
        # Snapshot so callers may remove sessions while iterating
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
