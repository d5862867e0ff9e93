"""Session lifecycle: lookup-or-create, identity rebind and delete."""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import logging
import uuid

import anyio
from anyio.abc import TaskGroup, TaskStatus

logger = logging.getLogger(__name__)


class MissingSessionToken(ValueError):
    pass


@dataclass
class Session:
    id: str
    identity: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # set once by the registry right after the session is created
    handlers: Any = field(default=None, repr=False, compare=False)


class SessionStore(ABC):
    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    def create(self, session: Session) -> None:
        ...

    @abstractmethod
    def rebind(self, session_id: str, identity: str) -> None:
        ...

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        ...

    @abstractmethod
    def sessions(self) -> List[Session]:
        ...


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def create(self, session: Session) -> None:
        if session.id in self._sessions:
            raise KeyError(f"Session id already in use: {session.id}")
        self._sessions[session.id] = session

    def rebind(self, session_id: str, identity: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.identity = identity

    def delete(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.handlers = None
        return True

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())


class SessionRegistry:
    """Maps session ids to a session and its tool-handler set.

    ``handler_factory`` receives the new :class:`Session` and returns the
    handler set for it. A handler set exposes ``serve(task_status=...)``,
    which runs for the life of the session, ``handle_request(scope, receive,
    send)`` and ``close()``. Handlers read ``session.identity`` on every call
    so a rebind is picked up by the next tool invocation.

    Sessions can only be created inside :meth:`run`, which owns the task group
    their servers run in.
    """

    def __init__(
        self,
        handler_factory: Callable[[Session], Any],
        store: Optional[SessionStore] = None,
        id_generator: Optional[Callable[[], str]] = None,
    ) -> None:
        self.handler_factory = handler_factory
        self.store = store if store is not None else InMemorySessionStore()
        self.id_generator = id_generator or (lambda: str(uuid.uuid4()))
        self._task_group: Optional[TaskGroup] = None

    @asynccontextmanager
    async def run(self) -> AsyncIterator["SessionRegistry"]:
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            logger.info("[MCP] session registry started")
            try:
                yield self
            finally:
                self._task_group = None
                for session in self.store.sessions():
                    await self.delete(session.id)
                tg.cancel_scope.cancel()
                logger.info("[MCP] session registry stopped")

    def lookup(self, session_token: Optional[str]) -> Optional[Session]:
        if not session_token:
            return None
        return self.store.get(session_token)

    async def lookup_or_create(self, session_token: Optional[str], identity: str) -> Session:
        existing = self.lookup(session_token)
        if existing is not None:
            return existing
        if self._task_group is None:
            raise RuntimeError("Session registry is not running")

        session = Session(id=self.id_generator(), identity=identity)
        session.handlers = self.handler_factory(session)
        self.store.create(session)
        await self._task_group.start(self._serve, session)
        logger.info("[MCP] created sessionId=%s user=%s", session.id, identity)
        return session

    def rebind(self, session: Session, identity: str) -> None:
        self.store.rebind(session.id, identity)
        # stores that hold copies still leave the caller's object current
        session.identity = identity
        logger.info("[MCP] updated sessionId=%s user=%s", session.id, identity)

    async def delete(self, session_token: Optional[str]) -> bool:
        if not session_token:
            raise MissingSessionToken("Missing session token")
        session = self.store.get(session_token)
        handlers = session.handlers if session is not None else None
        found = self.store.delete(session_token)
        if handlers is not None:
            await handlers.close()
        if found:
            logger.info("[MCP] deleted sessionId=%s", session_token)
        else:
            logger.info("[MCP] delete for unknown sessionId=%s ignored", session_token)
        return found

    async def _serve(self, session: Session, *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED) -> None:
        handlers = session.handlers
        try:
            await handlers.serve(task_status=task_status)
        except Exception:
            logger.exception("[MCP] server for sessionId=%s crashed", session.id)
        finally:
            # a server that stopped on its own must not stay reachable
            if self.store.get(session.id) is session:
                self.store.delete(session.id)
                logger.info("[MCP] server for sessionId=%s stopped", session.id)
