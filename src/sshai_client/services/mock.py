"""In-memory transport and completion backend used by demo mode and tests."""

from __future__ import annotations

import asyncio
import copy
import logging
import posixpath
import shlex
from dataclasses import dataclass, field

from sshai_client.errors import ConnectError, ConnectErrorKind
from sshai_client.services.backend import BackendResponse
from sshai_client.storage.models import CommandRequest, CommandResult, ConnectionConfig, TerminalContext

logger = logging.getLogger(__name__)

_LISTING = "Documents\nDownloads\nprojects\nnotes.txt\n"
_LONG_LISTING = (
    "total 24\n"
    "drwxr-xr-x  6 {user} {user} 4096 Jan 10 09:00 .\n"
    "drwxr-xr-x  3 root  root  4096 Jan  1 12:00 ..\n"
    "-rw-r--r--  1 {user} {user}  220 Jan  1 12:00 .bashrc\n"
    "drwxr-xr-x  2 {user} {user} 4096 Jan 10 09:00 Documents\n"
    "drwxr-xr-x  2 {user} {user} 4096 Jan 10 09:00 Downloads\n"
    "drwxr-xr-x  4 {user} {user} 4096 Jan 10 09:00 projects\n"
    "-rw-r--r--  1 {user} {user}  512 Jan 10 09:00 notes.txt\n"
)
_DF_OUTPUT = (
    "Filesystem      Size  Used Avail Use% Mounted on\n"
    "/dev/sda1        50G   31G   17G  65% /\n"
    "tmpfs           2.0G     0  2.0G   0% /dev/shm\n"
)


@dataclass
class MockHandle:
    host: str
    username: str
    home: str
    shell: str = "/bin/bash"
    connected: bool = True
    executed: list[CommandRequest] = field(default_factory=list)
    scripts: list[str] = field(default_factory=list)


class MockTransport:
    """Simulate a small Linux host.

    Hosts in ``unreachable_hosts`` refuse connections, users in
    ``rejected_users`` fail authentication. Commands in ``dropped_commands``
    behave like a channel that closes mid-command.
    """

    def __init__(
        self,
        unreachable_hosts: set[str] | None = None,
        rejected_users: set[str] | None = None,
        dropped_commands: set[str] | None = None,
        responses: dict[str, CommandResult] | None = None,
        shell: str = "/bin/bash",
    ) -> None:
        self.unreachable_hosts = set(unreachable_hosts or ())
        self.rejected_users = set(rejected_users or ())
        self.dropped_commands = set(dropped_commands or ())
        self.responses = dict(responses or {})
        self.shell = shell
        self.connect_attempts = 0
        self.disconnects = 0

    async def connect(self, config: ConnectionConfig) -> MockHandle:
        self.connect_attempts += 1
        await asyncio.sleep(0)
        if config.host in self.unreachable_hosts:
            raise ConnectError(ConnectErrorKind.UNREACHABLE, f"Cannot reach {config.host}:{config.port}")
        if config.username in self.rejected_users:
            raise ConnectError(ConnectErrorKind.AUTH_REJECTED, f"Authentication failed for {config.username}")
        home = "/root" if config.username == "root" else f"/home/{config.username}"
        logger.info("Mock connection to %s@%s", config.username, config.host)
        return MockHandle(host=config.host, username=config.username, home=home, shell=self.shell)

    async def execute(
        self, handle: MockHandle, script: str, request: CommandRequest, timeout: float
    ) -> CommandResult:
        if not handle.connected:
            raise EOFError("channel closed")
        handle.executed.append(request)
        handle.scripts.append(script)

        command = request.command.strip()
        if command in self.dropped_commands:
            raise EOFError("channel closed by remote host")
        if command in self.responses:
            canned = self.responses[command]
            return CommandResult(stdout=canned.stdout, stderr=canned.stderr, exit_code=canned.exit_code)

        env = dict(request.environment or {})
        cwd = self._resolve(handle, handle.home, request.working_directory or "~")
        stdout: list[str] = []
        stderr: list[str] = []
        exit_code = 0
        for step in command.split("&&"):
            exit_code, cwd, out, err = await self._run_step(handle, step.strip(), cwd, env)
            stdout.append(out)
            stderr.append(err)
            if exit_code != 0:
                break
        return CommandResult(stdout="".join(stdout), stderr="".join(stderr), exit_code=exit_code)

    async def disconnect(self, handle: MockHandle) -> None:
        self.disconnects += 1
        handle.connected = False

    async def _run_step(
        self, handle: MockHandle, step: str, cwd: str, env: dict[str, str]
    ) -> tuple[int, str, str, str]:
        """Returns (exit_code, new_cwd, stdout, stderr)."""
        try:
            argv = shlex.split(step)
        except ValueError as e:
            return 2, cwd, "", f"bash: syntax error: {e}\n"
        if not argv:
            return 0, cwd, "", ""

        name, args = argv[0], argv[1:]
        if name == "cd":
            target = self._resolve(handle, cwd, args[0] if args else "~")
            if target.startswith("/nonexistent"):
                return 1, cwd, "", f"bash: cd: {args[0]}: No such file or directory\n"
            return 0, target, "", ""
        if name == "pwd":
            return 0, cwd, f"{cwd}\n", ""
        if name == "whoami":
            return 0, cwd, f"{handle.username}\n", ""
        if name == "ls":
            if "-la" in args or "-al" in args or "-l" in args:
                return 0, cwd, _LONG_LISTING.format(user=handle.username), ""
            return 0, cwd, _LISTING, ""
        if name == "echo":
            words = [self._expand(handle, w, env) for w in args]
            return 0, cwd, " ".join(words) + "\n", ""
        if name == "uname":
            if "-a" in args:
                return 0, cwd, f"Linux {handle.host} 5.15.0-91-generic #101-Ubuntu SMP x86_64 GNU/Linux\n", ""
            if "-m" in args:
                return 0, cwd, "x86_64\n", ""
            if "-r" in args:
                return 0, cwd, "5.15.0-91-generic\n", ""
            return 0, cwd, "Linux\n", ""
        if name == "df":
            return 0, cwd, _DF_OUTPUT, ""
        if name == "sleep":
            await asyncio.sleep(float(args[0]) if args else 0)
            return 0, cwd, "", ""
        if name == "false":
            return 1, cwd, "", ""
        if name == "true":
            return 0, cwd, "", ""
        if name == "colors":
            return 0, cwd, "\x1b[0;32mgreen\x1b[0m \x1b]1337;CurrentDir=/tmp\x07plain\n", ""
        return 127, cwd, "", f"bash: {name}: command not found\n"

    def _expand(self, handle: MockHandle, word: str, env: dict[str, str]) -> str:
        if word == "$SHELL":
            return env.get("SHELL", handle.shell)
        if word == "$HOME":
            return handle.home
        if word.startswith("$"):
            return env.get(word[1:], "")
        return word

    @staticmethod
    def _resolve(handle: MockHandle, cwd: str, target: str) -> str:
        if target == "~":
            return handle.home
        if target.startswith("~/"):
            target = posixpath.join(handle.home, target[2:])
        elif not target.startswith("/"):
            target = posixpath.join(cwd, target)
        return posixpath.normpath(target)


# (keywords, payload) pairs, first match wins.
DEMO_SUGGESTIONS: list[tuple[tuple[str, ...], dict]] = [
    (
        ("disk", "space"),
        {
            "command": "df -h",
            "explanation": "Show filesystem disk usage in human-readable units",
            "confidence": 0.92,
            "risk": {"level": "safe", "score": 0.05},
            "alternatives": [
                {"command": "du -sh * | sort -h", "description": "Per-directory usage in the current directory"}
            ],
        },
    ),
    (
        ("large", "files"),
        {
            "command": "find . -type f -size +100M",
            "explanation": "List files larger than 100MB below the current directory",
            "confidence": 0.88,
            "risk": {"level": "safe", "score": 0.1},
        },
    ),
    (
        ("delete", "remove", "clean"),
        {
            "command": "rm -rf ./tmp",
            "explanation": "Recursively delete the tmp directory",
            "confidence": 0.7,
            "risk": {"level": "high", "score": 0.8, "warnings": ["Deleted files cannot be recovered"]},
        },
    ),
]

_DEFAULT_DEMO_SUGGESTION = {
    "command": "ls -la",
    "explanation": "List all files with details",
    "confidence": 0.5,
    "risk": {"level": "safe", "score": 0.0},
}


class MockBackend:
    """Keyword-driven completion backend for demo mode."""

    model = "demo"
    provider = "mock"

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[str] = []

    async def complete(self, query: str, context: TerminalContext) -> BackendResponse:
        self.calls.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        lowered = query.lower()
        payload = _DEFAULT_DEMO_SUGGESTION
        for keywords, candidate in DEMO_SUGGESTIONS:
            if any(word in lowered for word in keywords):
                payload = candidate
                break
        return BackendResponse(
            payload=copy.deepcopy(payload),
            model=self.model,
            provider=self.provider,
            prompt_tokens=len(query.split()),
            completion_tokens=len(payload["command"].split()),
        )
