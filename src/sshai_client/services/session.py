"""Remote session lifecycle: connect, execute under a login shell, disconnect."""

from __future__ import annotations

import asyncio
import logging
import shlex
import time
import uuid
from collections.abc import Callable
from typing import Any, Protocol

from sshai_client.errors import ConnectError, ConnectErrorKind, ExecError, ExecErrorKind
from sshai_client.storage.models import (
    CommandRequest,
    CommandResult,
    ConnectionConfig,
    Session,
    SessionState,
)

logger = logging.getLogger(__name__)

NO_SHELL_EXIT_CODE = 127
NO_SHELL_MESSAGE = "sshai: no usable login shell found on remote host"

StateListener = Callable[[str, SessionState, SessionState], None]


class Transport(Protocol):
    """Narrow contract a remote transport implements."""

    async def connect(self, config: ConnectionConfig) -> Any: ...

    async def execute(
        self, handle: Any, script: str, request: CommandRequest, timeout: float
    ) -> CommandResult: ...

    async def disconnect(self, handle: Any) -> None: ...


def build_payload(request: CommandRequest) -> str:
    """Command text with working directory and environment overrides applied."""
    parts: list[str] = []
    cwd = request.working_directory
    if cwd:
        if cwd == "~":
            parts.append("cd ~")
        elif cwd.startswith("~/"):
            parts.append(f"cd ~/{shlex.quote(cwd[2:])}")
        else:
            parts.append(f"cd {shlex.quote(cwd)}")
    for name, value in (request.environment or {}).items():
        parts.append(f"export {name}={shlex.quote(value)}")
    parts.append(request.command)
    return " && ".join(parts)


def build_login_script(request: CommandRequest, preferred_shell: str = "") -> str:
    """Wrap a request so it runs in an interactive login shell.

    Shells are tried in order: the preferred one (``$SHELL`` unless
    configured), bash, sh. With none available the script exits 127.
    """
    payload = shlex.quote(build_payload(request))
    preferred = shlex.quote(preferred_shell) if preferred_shell else '"$SHELL"'
    return (
        f"if [ -n {preferred} ] && command -v {preferred} >/dev/null 2>&1; "
        f"then exec {preferred} -lic {payload}; "
        f"elif command -v bash >/dev/null 2>&1; then exec bash -lic {payload}; "
        f"elif command -v sh >/dev/null 2>&1; then exec sh -lc {payload}; "
        f"else echo {shlex.quote(NO_SHELL_MESSAGE)} >&2; exit {NO_SHELL_EXIT_CODE}; fi"
    )


class SessionManager:
    """Track remote sessions and drive them through their lifecycle."""

    def __init__(
        self,
        transport: Transport,
        command_timeout: float = 60.0,
        preferred_shell: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.transport = transport
        self.command_timeout = command_timeout
        self.preferred_shell = preferred_shell
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[StateListener] = []

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a state transition callback. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def state(self, session_id: str) -> SessionState:
        session = self._sessions.get(session_id)
        return session.state if session else SessionState.DISCONNECTED

    @property
    def active_sessions(self) -> list[Session]:
        return [s for s in self._sessions.values() if s.state == SessionState.CONNECTED]

    def _transition(self, session: Session, new_state: SessionState) -> None:
        old_state = session.state
        session.state = new_state
        logger.info("Session %s: %s -> %s", session.id, old_state.value, new_state.value)
        for listener in list(self._listeners):
            try:
                listener(session.id, old_state, new_state)
            except Exception:
                logger.exception("State listener failed")

    def _forget(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)

    async def connect(self, config: ConnectionConfig) -> str:
        """Open a session. Returns its id or raises ConnectError."""
        session = Session(
            id=uuid.uuid4().hex,
            host=config.host,
            port=config.port,
            user=config.username,
            auth_method=config.auth.method,
        )
        lock = asyncio.Lock()
        self._sessions[session.id] = session
        self._locks[session.id] = lock

        async with lock:
            self._transition(session, SessionState.CONNECTING)
            try:
                session.handle = await asyncio.wait_for(
                    self.transport.connect(config), timeout=config.timeout
                )
            except asyncio.CancelledError:
                logger.info("Connect to %s@%s cancelled", config.username, config.host)
                session.handle = None
                self._transition(session, SessionState.DISCONNECTED)
                self._forget(session.id)
                raise
            except Exception as e:
                error = _to_connect_error(e, config)
                logger.warning("Connect to %s@%s failed: %s", config.username, config.host, error)
                session.handle = None
                self._transition(session, SessionState.FAILED)
                self._transition(session, SessionState.DISCONNECTED)
                self._forget(session.id)
                raise error from e
            self._transition(session, SessionState.CONNECTED)

        logger.info("Connected to %s@%s:%d", config.username, config.host, config.port)
        return session.id

    async def execute(
        self,
        session_id: str,
        request: CommandRequest,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command on the session. A failure leaves session state unchanged."""
        session = self._sessions.get(session_id)
        if session is None or session.state != SessionState.CONNECTED:
            raise ExecError(ExecErrorKind.NOT_CONNECTED, "No active SSH connection")

        limit = timeout if timeout is not None else self.command_timeout
        script = build_login_script(request, self.preferred_shell)
        started = self._clock()
        try:
            result = await asyncio.wait_for(
                self.transport.execute(session.handle, script, request, limit),
                timeout=limit,
            )
        except ExecError:
            raise
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise ExecError(ExecErrorKind.TIMEOUT, f"Command timed out after {limit}s") from e
        except Exception as e:
            logger.warning("Channel failure on session %s: %s", session_id, e)
            raise ExecError(ExecErrorKind.CHANNEL_CLOSED, str(e) or type(e).__name__) from e

        result.started_at = started
        result.finished_at = self._clock()
        return result

    async def disconnect(self, session_id: str) -> None:
        """Close a session. Safe to call repeatedly; teardown errors are logged."""
        session = self._sessions.get(session_id)
        lock = self._locks.get(session_id)
        if session is None or lock is None:
            return

        async with lock:
            if session.state == SessionState.DISCONNECTED:
                return
            self._transition(session, SessionState.DISCONNECTING)
            try:
                if session.handle is not None:
                    await self.transport.disconnect(session.handle)
            except Exception:
                logger.exception("Error while closing session %s", session_id)
            finally:
                session.handle = None
                self._transition(session, SessionState.DISCONNECTED)
                self._forget(session_id)


def _to_connect_error(exc: BaseException, config: ConnectionConfig) -> ConnectError:
    if isinstance(exc, ConnectError):
        return exc
    target = f"{config.host}:{config.port}"
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ConnectError(ConnectErrorKind.TIMEOUT, f"Timed out connecting to {target}")
    if isinstance(exc, OSError):
        return ConnectError(ConnectErrorKind.UNREACHABLE, f"Cannot reach {target}: {exc}")
    return ConnectError(ConnectErrorKind.PROTOCOL_ERROR, f"SSH negotiation with {target} failed: {exc}")
