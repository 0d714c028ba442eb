"""paramiko-backed SSH transport."""

from __future__ import annotations

import asyncio
import functools
import io
import logging
import socket
import time
from collections.abc import Callable
from typing import Any, TypeVar

import paramiko

from sshai_client.errors import ConnectError, ConnectErrorKind
from sshai_client.storage.models import (
    CommandRequest,
    CommandResult,
    ConnectionConfig,
    KeyAuth,
    PasswordAuth,
)

logger = logging.getLogger(__name__)

KEEPALIVE_INTERVAL = 30

T = TypeVar("T")
_PKEY_CLASSES = (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey)


def load_private_key(key_data: str, passphrase: str | None = None) -> paramiko.PKey:
    """Parse PEM/OpenSSH key text, trying each supported key type."""
    last_error: Exception | None = None
    for key_class in _PKEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(key_data), password=passphrase)
        except paramiko.PasswordRequiredException as e:
            raise ConnectError(ConnectErrorKind.AUTH_REJECTED, "Private key is encrypted; passphrase required") from e
        except (paramiko.SSHException, ValueError) as e:
            last_error = e
    raise ConnectError(ConnectErrorKind.AUTH_REJECTED, f"Unsupported or invalid private key: {last_error}")


class ParamikoTransport:
    """Run blocking paramiko calls in worker threads."""

    def _connect_sync(self, config: ConnectionConfig) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        if config.verify_host_key:
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs: dict = {
            "hostname": config.host,
            "port": config.port,
            "username": config.username,
            "timeout": config.timeout,
            "banner_timeout": config.timeout,
            "auth_timeout": config.timeout,
            "allow_agent": False,
            "look_for_keys": False,
        }
        auth = config.auth
        if isinstance(auth, PasswordAuth):
            connect_kwargs["password"] = auth.password
        elif isinstance(auth, KeyAuth):
            if auth.key_data:
                connect_kwargs["pkey"] = load_private_key(auth.key_data, auth.passphrase)
            elif auth.key_path:
                connect_kwargs["key_filename"] = auth.key_path
                if auth.passphrase:
                    connect_kwargs["passphrase"] = auth.passphrase
            else:
                connect_kwargs["allow_agent"] = True
                connect_kwargs["look_for_keys"] = True

        try:
            client.connect(**connect_kwargs)
        except Exception:
            client.close()
            raise

        transport = client.get_transport()
        if transport:
            transport.set_keepalive(KEEPALIVE_INTERVAL)
        return client

    async def connect(self, config: ConnectionConfig) -> paramiko.SSHClient:
        try:
            return await _run_in_thread(self._connect_sync, config, on_late_result=_close_client)
        except ConnectError:
            raise
        except paramiko.AuthenticationException as e:
            raise ConnectError(ConnectErrorKind.AUTH_REJECTED, f"Authentication failed for {config.username}") from e
        except (socket.timeout, TimeoutError) as e:
            raise ConnectError(ConnectErrorKind.TIMEOUT, f"Timed out connecting to {config.host}:{config.port}") from e
        except (paramiko.ssh_exception.NoValidConnectionsError, socket.gaierror, OSError) as e:
            raise ConnectError(ConnectErrorKind.UNREACHABLE, f"Cannot reach {config.host}:{config.port}: {e}") from e
        except paramiko.SSHException as e:
            raise ConnectError(ConnectErrorKind.PROTOCOL_ERROR, str(e)) from e

    def _collect_sync(self, stdout: paramiko.ChannelFile, stderr: paramiko.ChannelFile) -> CommandResult:
        started = time.time()
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        exit_code = stdout.channel.recv_exit_status()
        if exit_code == -1:
            raise EOFError("channel closed without exit status")
        return CommandResult(
            stdout=out,
            stderr=err,
            exit_code=exit_code,
            started_at=started,
            finished_at=time.time(),
        )

    async def execute(
        self, handle: paramiko.SSHClient, script: str, request: CommandRequest, timeout: float
    ) -> CommandResult:
        transport = handle.get_transport()
        if transport is None or not transport.is_active():
            raise EOFError("SSH transport is not active")
        _stdin, stdout, stderr = await _run_in_thread(
            functools.partial(handle.exec_command, script, timeout=timeout, get_pty=request.pty),
            on_late_result=_close_streams,
        )
        channel = stdout.channel
        try:
            return await asyncio.to_thread(self._collect_sync, stdout, stderr)
        except asyncio.CancelledError:
            # Closing the channel ends the remote command and unblocks the reader thread.
            logger.info("Closing channel for cancelled command")
            channel.close()
            raise

    async def disconnect(self, handle: paramiko.SSHClient) -> None:
        await asyncio.to_thread(handle.close)


async def _run_in_thread(func: Callable[..., T], *args: Any, on_late_result: Callable[[T], None]) -> T:
    """Run a blocking call in a worker thread.

    If the caller is cancelled while the call is still running, the call's
    eventual result is handed to ``on_late_result`` so it can be released.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        task.add_done_callback(functools.partial(_release_late_result, on_late_result))
        raise


def _release_late_result(on_late_result: Callable[[Any], None], task: asyncio.Future) -> None:
    if task.cancelled() or task.exception() is not None:
        return
    try:
        on_late_result(task.result())
    except Exception:
        logger.exception("Failed to release late SSH resource")


def _close_client(client: paramiko.SSHClient) -> None:
    logger.info("Closing SSH connection that completed after its deadline")
    client.close()


def _close_streams(streams: tuple[Any, Any, Any]) -> None:
    streams[1].channel.close()
