"""Per-input pipeline: classify, then execute directly or go through a suggestion."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import posixpath
import re
from collections.abc import Callable
from dataclasses import dataclass

from sshai_client.errors import ConfirmationRequired, ExecError, ExecErrorKind, SshAiError
from sshai_client.services.cache import SuggestionCache
from sshai_client.services.classifier import IntentClassifier
from sshai_client.services.generator import SuggestionGenerator
from sshai_client.services.sanitizer import sanitize
from sshai_client.services.session import SessionManager
from sshai_client.storage.database import Database
from sshai_client.storage.models import (
    Classification,
    CommandRequest,
    ConnectionConfig,
    HistoryItem,
    InputType,
    SessionState,
    Suggestion,
    TerminalContext,
)

logger = logging.getLogger(__name__)

MAX_RECENT_COMMANDS = 20
NO_CONNECTION_MESSAGE = "Error: No active SSH connection"

_SIMPLE_CD = re.compile(r"^cd(\s+[^\s;&|<>`$()]+)?$")
_CONTEXT_COMMANDS: tuple[tuple[str, str], ...] = (
    ("uname -s", "os_name"),
    ("uname -r", "os_version"),
    ("uname -m", "architecture"),
    ("echo $SHELL", "shell"),
    ("pwd", "working_directory"),
)


@dataclass(frozen=True)
class TerminalSnapshot:
    """Immutable view of everything a presentation layer renders."""

    session_id: str | None
    session_state: SessionState
    context: TerminalContext
    current_query: str | None
    current_suggestion: Suggestion | None
    history: tuple[HistoryItem, ...]
    is_generating: bool
    last_error: str | None


@dataclass(frozen=True)
class InputOutcome:
    classification: Classification
    history_item: HistoryItem | None = None
    suggestion: Suggestion | None = None
    from_cache: bool = False


@dataclass
class _PendingSuggestion:
    query: str
    suggestion: Suggestion
    entry_id: int | None


SnapshotListener = Callable[[TerminalSnapshot], None]


class Orchestrator:
    """Owns the session handle, the pending suggestion and the history log."""

    def __init__(
        self,
        sessions: SessionManager,
        generator: SuggestionGenerator,
        cache: SuggestionCache,
        classifier: IntentClassifier | None = None,
        database: Database | None = None,
        context: TerminalContext | None = None,
    ) -> None:
        self.sessions = sessions
        self.generator = generator
        self.cache = cache
        self.classifier = classifier or IntentClassifier()
        self.database = database
        self.context = context or TerminalContext()
        self.session_id: str | None = None
        self.history: list[HistoryItem] = []
        self.last_error: str | None = None

        self._pending: _PendingSuggestion | None = None
        self._generation_seq = 0
        self._generation_task: asyncio.Task | None = None
        self._apply_lock = asyncio.Lock()
        self._listeners: list[SnapshotListener] = []
        self._remove_session_listener = sessions.add_listener(self._on_session_transition)

    # --- Observation ---

    @property
    def current_suggestion(self) -> Suggestion | None:
        return self._pending.suggestion if self._pending else None

    @property
    def is_generating(self) -> bool:
        return self._generation_task is not None and not self._generation_task.done()

    def snapshot(self) -> TerminalSnapshot:
        return TerminalSnapshot(
            session_id=self.session_id,
            session_state=self.sessions.state(self.session_id) if self.session_id else SessionState.DISCONNECTED,
            context=dataclasses.replace(self.context, recent_commands=list(self.context.recent_commands)),
            current_query=self._pending.query if self._pending else None,
            current_suggestion=self.current_suggestion,
            history=tuple(self.history),
            is_generating=self.is_generating,
            last_error=self.last_error,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call listener with a fresh snapshot on every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Snapshot listener failed")

    def _on_session_transition(self, session_id: str, _old: SessionState, _new: SessionState) -> None:
        if session_id == self.session_id:
            self._publish()

    # --- Session ---

    async def connect(self, config: ConnectionConfig) -> str:
        """Open a session (replacing any current one) and gather the remote environment."""
        if self.session_id:
            await self.disconnect()
        try:
            session_id = await self.sessions.connect(config)
        except SshAiError as e:
            self.last_error = str(e)
            self._publish()
            raise
        self.session_id = session_id
        self.last_error = None
        self.context.session_id = session_id
        self.context.username = config.username
        await self._gather_context()
        self._publish()
        return session_id

    async def disconnect(self) -> None:
        if self.session_id is None:
            return
        session_id = self.session_id
        await self.sessions.disconnect(session_id)
        self.session_id = None
        self.context.session_id = ""
        self._publish()

    async def _gather_context(self) -> None:
        """Fill in OS, architecture, shell and working directory; failures keep defaults."""
        for command, attr in _CONTEXT_COMMANDS:
            try:
                result = await self.sessions.execute(self.session_id, CommandRequest(command=command))
            except ExecError as e:
                logger.warning("Context command %r failed: %s", command, e)
                continue
            lines = sanitize(result.stdout).strip().splitlines()
            if result.exit_code != 0 or not lines:
                continue
            value = lines[-1].strip()
            if attr == "shell":
                value = posixpath.basename(value)
            if value:
                setattr(self.context, attr, value)
        logger.info(
            "Remote context: %s %s, shell=%s, cwd=%s",
            self.context.os_name,
            self.context.architecture,
            self.context.shell,
            self.context.working_directory,
        )

    # --- Input ---

    async def handle_input(self, text: str) -> InputOutcome | None:
        """Route one line of user input. Empty input is ignored."""
        if not text.strip():
            return None
        classification = self.classifier.classify(text, self.context)
        logger.info(
            "Classified %r as %s (%.2f): %s",
            text,
            classification.type.value,
            classification.confidence,
            classification.reason,
        )
        if classification.type == InputType.COMMAND:
            item = await self.execute_command(text.strip())
            return InputOutcome(classification=classification, history_item=item)

        suggestion, from_cache = await self._suggest(text.strip())
        return InputOutcome(classification=classification, suggestion=suggestion, from_cache=from_cache)

    async def request_suggestion(self, query: str) -> Suggestion | None:
        """Fetch a suggestion for query. Returns None if a newer query superseded it."""
        suggestion, _ = await self._suggest(query)
        return suggestion

    async def _suggest(self, query: str) -> tuple[Suggestion | None, bool]:
        # A store in progress finishes before a newer query takes over.
        async with self._apply_lock:
            self._generation_seq += 1
            seq = self._generation_seq
            if self._generation_task is not None and not self._generation_task.done():
                self._generation_task.cancel()
        context = dataclasses.replace(self.context, recent_commands=list(self.context.recent_commands))

        entry = await self.cache.lookup(query, context)
        if entry is not None:
            if seq != self._generation_seq:
                return None, False
            self._pending = _PendingSuggestion(query, entry.suggestion, entry.id)
            self.last_error = None
            self._publish()
            return entry.suggestion, True
        if seq != self._generation_seq:
            return None, False

        task = asyncio.create_task(self.generator.generate_detailed(query, context))
        self._generation_task = task
        self._publish()
        try:
            generated = await task
        except asyncio.CancelledError:
            if task.cancelled() and seq != self._generation_seq:
                logger.debug("Generation for %r superseded", query)
                return None, False
            raise
        except SshAiError as e:
            if seq == self._generation_seq:
                self.last_error = str(e)
                self._publish()
            raise
        finally:
            if self._generation_task is task:
                self._generation_task = None

        async with self._apply_lock:
            if seq != self._generation_seq:
                logger.debug("Discarding stale suggestion for %r", query)
                return None, False
            entry = await self.cache.store(
                query, context, generated.suggestion, generated.model_id, generated.provider_id
            )
            self._pending = _PendingSuggestion(query, generated.suggestion, entry.id)
            self.last_error = None
        self._publish()
        return generated.suggestion, False

    def dismiss_suggestion(self) -> None:
        self._pending = None
        self._publish()

    async def execute_suggestion(self, confirmed: bool = False) -> HistoryItem:
        """Run the current suggestion. Flagged suggestions need confirmed=True."""
        pending = self._pending
        if pending is None:
            raise SshAiError("No suggestion to execute")
        if pending.suggestion.risk.requires_confirmation and not confirmed:
            raise ConfirmationRequired(
                f"'{pending.suggestion.command}' is {pending.suggestion.risk.level.value} risk and needs confirmation"
            )
        self._pending = None
        if pending.entry_id is not None:
            await self.cache.mark_accepted(pending.entry_id)
        return await self.execute_command(pending.suggestion.command, source="suggestion")

    async def execute_command(self, command: str, source: str = "direct") -> HistoryItem:
        """Run command on the current session. Always appends exactly one history item."""
        tracks_cd = bool(_SIMPLE_CD.match(command))
        request = CommandRequest(
            command=f"{command} && pwd" if tracks_cd else command,
            working_directory=self.context.working_directory,
        )
        execution_time_ms = 0
        try:
            if self.session_id is None:
                raise ExecError(ExecErrorKind.NOT_CONNECTED, NO_CONNECTION_MESSAGE)
            result = await self.sessions.execute(self.session_id, request)
        except ExecError as e:
            message = NO_CONNECTION_MESSAGE if e.kind == ExecErrorKind.NOT_CONNECTED else f"Execution failed: {e}"
            item = HistoryItem(command=command, output="", error=message, exit_code=-1, source=source)
        else:
            stdout = sanitize(result.stdout)
            stderr = sanitize(result.stderr)
            if tracks_cd and result.exit_code == 0:
                stdout = self._update_working_directory(stdout)
            item = HistoryItem(
                command=command,
                output=stdout,
                error=stderr or None,
                exit_code=result.exit_code,
                source=source,
            )
            execution_time_ms = result.execution_time_ms
            self._remember(command)

        self.history.append(item)
        self._publish()
        if self.database is not None:
            await self.database.save_command(
                session_id=self.session_id or "",
                command=command,
                stdout=item.output,
                stderr=item.error or "",
                exit_code=item.exit_code,
                execution_time_ms=execution_time_ms,
                source=source,
            )
        return item

    def _update_working_directory(self, stdout: str) -> str:
        """Consume the trailing pwd line and return the remaining output."""
        lines = stdout.rstrip("\n").split("\n")
        new_cwd = lines.pop().strip()
        if new_cwd:
            logger.debug("Working directory now %s", new_cwd)
            self.context.working_directory = new_cwd
        return "\n".join(lines) + "\n" if lines else ""

    def _remember(self, command: str) -> None:
        recent = self.context.recent_commands
        if command in recent:
            recent.remove(command)
        recent.append(command)
        del recent[:-MAX_RECENT_COMMANDS]

    async def close(self) -> None:
        if self._generation_task is not None and not self._generation_task.done():
            self._generation_task.cancel()
        await self.disconnect()
        self._remove_session_listener()
