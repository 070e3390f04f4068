"""Room coordinator: the single authority for one chat room.

The coordinator owns the live session registry and the bounded message
history. The application layer calls it at these entry points:
    - admit(): a client finished the WebSocket upgrade
    - on_inbound_frame(): a client sent a text frame
    - on_channel_closed(): a client's channel closed or errored
    - disconnect(): the server ends a session on purpose
    - on_timer_fire(): the store's cleanup wake-up elapsed

Key behaviour:
    - History is loaded from the store before any entry point is served
    - New sessions get history, then their own join event, then presence
    - Messages are capped at ``history_limit`` (oldest evicted first) and
      pruned by age on every cleanup wake-up
    - Broadcast is best-effort per recipient and never raises
    - Persistence runs in the background and never delays delivery

Thread Safety:
    Designed for a single asyncio event loop. Every state-changing entry
    point runs under one asyncio.Lock, so handlers never interleave.
"""
import asyncio
import logging
from typing import Callable, List, Optional

from pydantic import ValidationError

from app.config import ChatSettings
from app.store import DurableStore

from .channel import Channel
from .errors import (
    InvalidRequest,
    MalformedPayload,
    PersistenceFailure,
    UnsupportedProtocol,
)
from .history import HistoryWriter, retry_store_call
from .schemas import (
    CallerIdentity,
    ChatMessage,
    HistoryPayload,
    MessageType,
    PresencePayload,
    PresenceUser,
    now_ms,
    parse_inbound_frame,
)
from .session import Session, SessionRegistry

logger = logging.getLogger(__name__)

# Store key holding the persisted history
HISTORY_KEY = "messages"


class RoomCoordinator:
    """Owns sessions and history for one room.

    Create instances with ``await RoomCoordinator.create(store)`` so the
    persisted history is loaded before the instance is handed out.
    """

    def __init__(
        self,
        store: DurableStore,
        settings: Optional[ChatSettings] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize an unloaded coordinator.

        Args:
            store: Durable store for history and cleanup wake-ups.
            settings: Chat limits. Defaults to ChatSettings().
            clock: Returns the current time in epoch milliseconds.
        """
        self._store = store
        self._settings = settings or ChatSettings()
        self._clock = clock

        self._sessions = SessionRegistry()
        self._history: List[ChatMessage] = []

        self._lock = asyncio.Lock()
        self._ready = asyncio.Event()
        self._load_error: Optional[PersistenceFailure] = None
        self._writer = HistoryWriter(
            store,
            HISTORY_KEY,
            retries=self._settings.persist_retries,
            retry_delay=self._settings.persist_retry_delay_seconds,
        )

    @classmethod
    async def create(
        cls,
        store: DurableStore,
        settings: Optional[ChatSettings] = None,
        clock: Callable[[], int] = now_ms,
    ) -> "RoomCoordinator":
        """Build a coordinator and load its history.

        Raises:
            PersistenceFailure: If the history cannot be loaded.
        """
        coordinator = cls(store, settings, clock)
        await coordinator.start()
        return coordinator

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Load persisted history and arm the cleanup wake-up.

        Entry points called before this completes wait for it. If loading
        fails the coordinator stays unusable and every entry point raises.

        Raises:
            PersistenceFailure: If the store cannot be read.
        """
        async with self._lock:
            if self._ready.is_set():
                if self._load_error is not None:
                    raise self._load_error
                return

            try:
                stored = await self._store.get(HISTORY_KEY)
                self._history = self._restore(stored)
                self._store.set_wakeup_handler(self.on_timer_fire)
                pending = await self._store.resume_wakeup()
                if pending is None:
                    await self._store.schedule_wakeup(
                        self._clock() + self._settings.cleanup_interval_ms
                    )
            except PersistenceFailure as e:
                self._fail_start(e)
                raise
            except Exception as e:
                failure = PersistenceFailure(str(e), key=HISTORY_KEY)
                self._fail_start(failure)
                raise failure from e

            self._writer.start()
            self._ready.set()
            logger.info(f"[Room] Loaded {len(self._history)} messages from store")

    async def close(self) -> None:
        """Flush pending history writes and stop the writer."""
        await self._writer.stop()

    async def flush(self) -> bool:
        """Wait for background history writes. Returns whether the last one succeeded."""
        return await self._writer.flush()

    def _fail_start(self, error: PersistenceFailure) -> None:
        # Wake waiting entry points so they raise instead of hanging
        self._load_error = error
        self._ready.set()
        logger.error(f"[Room] Failed to load history, room will not serve: {error}")

    def _restore(self, stored: object) -> List[ChatMessage]:
        if stored is None:
            return []
        if not isinstance(stored, list):
            logger.warning(f"[Room] Ignoring stored history of type {type(stored).__name__}")
            return []

        messages = []
        for item in stored:
            try:
                messages.append(ChatMessage.model_validate(item))
            except ValidationError as e:
                logger.warning(f"[Room] Dropping invalid stored message: {e.error_count()} error(s)")
        return messages[-self._settings.history_limit:]

    async def _wait_ready(self) -> None:
        await self._ready.wait()
        if self._load_error is not None:
            raise self._load_error

    # =========================================================================
    # Entry points
    # =========================================================================

    async def admit(self, identity: Optional[CallerIdentity], channel: Optional[Channel]) -> int:
        """Admit a new session to the room.

        Sends the new session its history, broadcasts its join event to
        everyone including itself, then sends it the presence roster.

        Args:
            identity: Caller identity from the upgrade request.
            channel: The established client channel.

        Returns:
            The new session's id, used for all later calls.

        Raises:
            InvalidRequest: If the user id or username is missing.
            UnsupportedProtocol: If no duplex channel was provided.
        """
        if identity is None or not identity.user_id or not identity.username:
            raise InvalidRequest()
        if channel is None or not isinstance(channel, Channel):
            raise UnsupportedProtocol()

        await self._wait_ready()
        async with self._lock:
            session = self._sessions.register(channel, identity.user_id, identity.username)
            logger.info(
                f"[Room] Session {session.session_id} admitted for user {session.user_id}. "
                f"Live sessions: {len(self._sessions)}"
            )

            history = HistoryPayload(messages=[msg.to_wire() for msg in self._history])
            self._send(session, history.model_dump_json())
            self._broadcast(self._event(MessageType.JOIN, session))
            self._send(session, self.presence_payload().model_dump_json())
            return session.session_id

    async def on_inbound_frame(self, session_id: int, data: str) -> Optional[ChatMessage]:
        """Handle a text frame from a session.

        Malformed frames and frames from unknown sessions are logged and
        dropped; nothing is sent to any client.

        Returns:
            The broadcast ChatMessage, or None if the frame was dropped.
        """
        await self._wait_ready()
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.debug(f"[Room] Frame from unknown session {session_id} ignored")
                return None

            try:
                inbound = parse_inbound_frame(data)
            except MalformedPayload as e:
                logger.warning(f"[Room] Dropped frame from session {session_id}: {e.message}")
                return None

            # Identity always comes from the session, never from the payload
            message = ChatMessage(
                type=MessageType.MESSAGE,
                userId=session.user_id,
                username=session.username,
                content=inbound.content,
                timestamp=self._clock(),
            )
            self._history.append(message)
            limit = self._settings.history_limit
            if len(self._history) > limit:
                self._history = self._history[-limit:]

            self._writer.submit(self._snapshot())
            self._broadcast(message)
            return message

    async def on_channel_closed(self, session_id: int) -> bool:
        """Tear down a session whose channel closed or errored.

        Idempotent: an already-removed session is a no-op.

        Returns:
            True if a live session was removed.
        """
        await self._wait_ready()
        async with self._lock:
            return self._remove_session(session_id)

    async def disconnect(self, session_id: int) -> bool:
        """End a session from the server side.

        The leave event goes to every session, the departing one included,
        and the later close of its channel does not announce it again.

        Returns:
            True if a live session was removed.
        """
        await self._wait_ready()
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            self._broadcast(self._event(MessageType.LEAVE, session))
            session.quit = True
            return self._remove_session(session_id)

    async def on_timer_fire(self) -> None:
        """Prune history older than the retention window and re-arm the timer.

        The next wake-up is scheduled even when persistence fails.
        """
        await self._wait_ready()
        async with self._lock:
            fired_at = self._clock()
            cutoff = fired_at - self._settings.retention_ms
            before = len(self._history)
            self._history = [msg for msg in self._history if msg.timestamp > cutoff]
            self._writer.submit(self._snapshot())
            logger.info(
                f"[Room] Cleanup removed {before - len(self._history)} messages, "
                f"{len(self._history)} retained"
            )

        try:
            await self._writer.flush()
        finally:
            next_fire = fired_at + self._settings.cleanup_interval_ms
            await retry_store_call(
                lambda: self._store.schedule_wakeup(next_fire),
                "Scheduling next cleanup",
                self._settings.persist_retries,
                self._settings.persist_retry_delay_seconds,
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def presence(self) -> List[PresenceUser]:
        """Roster of live sessions, one entry per session, in admission order."""
        return self._sessions.presence()

    def presence_payload(self) -> PresencePayload:
        return PresencePayload(users=self.presence())

    def history(self) -> List[ChatMessage]:
        """Copy of the current history, oldest first."""
        return list(self._history)

    @property
    def settings(self) -> ChatSettings:
        return self._settings

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # =========================================================================
    # Internals
    # =========================================================================

    def _event(self, kind: MessageType, session: Session) -> ChatMessage:
        return ChatMessage(
            type=kind,
            userId=session.user_id,
            username=session.username,
            timestamp=self._clock(),
        )

    def _snapshot(self) -> List[dict]:
        return [msg.to_wire() for msg in self._history]

    def _remove_session(self, session_id: int) -> bool:
        session = self._sessions.remove(session_id)
        if session is None:
            return False

        if not session.quit:
            self._broadcast(self._event(MessageType.LEAVE, session))
        logger.info(
            f"[Room] Session {session_id} for user {session.user_id} removed. "
            f"Live sessions: {len(self._sessions)}"
        )

        try:
            session.channel.close()
        except Exception as e:
            logger.debug(f"[Room] Channel for session {session_id} already closed: {e}")
        return True

    def _send(self, session: Session, text: str) -> None:
        try:
            session.channel.send(text)
        except Exception as e:
            logger.warning(f"[Room] Failed to send to session {session.session_id}: {e}")

    def _broadcast(self, message: ChatMessage) -> None:
        """Deliver one message to every live session. Never raises."""
        text = message.model_dump_json(exclude_none=True)
        for session in self._sessions:
            try:
                session.channel.send(text)
            except Exception as e:
                # The close path reaps this session
                logger.warning(
                    f"[Room] Broadcast to session {session.session_id} failed: {e}"
                )
