"""Paramiko-backed remote shell.

``ParamikoShell.connect`` returns an ``SSHSession`` that can run commands,
copy files over SFTP, and execute long-running commands under a PTY while
streaming their output.
"""

from __future__ import annotations

import io
import time
from collections.abc import Callable

import paramiko
from loguru import logger
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from skyfleet.constants import DEFAULT_SSH_CONNECT_TIMEOUT, DEFAULT_SSH_RETRY_DELAY
from skyfleet.core.exceptions import (
    CommandTimeoutError,
    ConnectionLostError,
    SSHConnectionError,
)
from skyfleet.types.protocols import OutputSink

__all__ = ["ParamikoShell", "SSHSession", "load_private_key"]

_KEY_TYPES: tuple[type[paramiko.PKey], ...] = (
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
    paramiko.RSAKey,
)

_CHUNK = 4096
_IDLE_WAIT = 0.1

_RETRYABLE = (OSError, EOFError, paramiko.SSHException)


def load_private_key(private_key: str) -> paramiko.PKey:
    """Parse PEM/OpenSSH private key material of any supported type."""
    last_error: Exception | None = None
    for key_type in _KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(private_key))
        except (paramiko.SSHException, ValueError) as e:
            last_error = e
    raise ValueError(f"Unsupported private key: {last_error}")


class SSHSession:
    """An open SSH connection to one host."""

    __slots__ = ("_client", "_host", "_clock", "_sleep")

    def __init__(
        self,
        client: paramiko.SSHClient,
        host: str,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._host = host
        self._clock = clock
        self._sleep = sleep

    def run(self, command: str, timeout: float | None = None) -> int:
        logger.debug(f"SSH {self._host}: {command}")
        _, stdout, _ = self._client.exec_command(command, timeout=timeout)
        code = stdout.channel.recv_exit_status()
        logger.debug(f"SSH {self._host}: exit_code={code}")
        return code

    def copy_file(self, content: bytes, remote_path: str, mode: int) -> None:
        sftp = self._client.open_sftp()
        try:
            sftp.putfo(io.BytesIO(content), remote_path)
            sftp.chmod(remote_path, mode)
        finally:
            sftp.close()

    def execute(self, command: str, *, timeout: float, on_output: OutputSink) -> int:
        """Execute under a PTY so stdout and stderr arrive as one stream."""
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise ConnectionLostError(self._host, "transport not active")

        channel = transport.open_session()
        try:
            channel.get_pty()
            channel.exec_command(command)
            channel.shutdown_write()
            return self._pump(channel, command, timeout, on_output)
        finally:
            channel.close()

    def _pump(
        self,
        channel: paramiko.Channel,
        command: str,
        timeout: float,
        on_output: OutputSink,
    ) -> int:
        deadline = self._clock() + timeout
        buffer = ""

        while True:
            if channel.recv_ready():
                chunk = channel.recv(_CHUNK)
                buffer = _emit_lines(buffer + chunk.decode("utf-8", errors="replace"), on_output)
                continue

            if channel.exit_status_ready():
                if buffer:
                    on_output(buffer)
                return channel.recv_exit_status()

            if channel.closed:
                if buffer:
                    on_output(buffer)
                raise ConnectionLostError(self._host, f"channel closed while running {command!r}")

            if self._clock() >= deadline:
                raise CommandTimeoutError(command, timeout)

            self._sleep(_IDLE_WAIT)

    def close(self) -> None:
        self._client.close()


def _emit_lines(text: str, on_output: OutputSink) -> str:
    """Send complete lines to the sink and return the unfinished tail."""
    *lines, tail = text.split("\n")
    for line in lines:
        on_output(line.rstrip("\r"))
    return tail


class ParamikoShell:
    """Opens SSH sessions with bounded retries.

    Args:
        connect_timeout: Per-attempt TCP/banner/auth timeout.
        retry_delay: Delay between attempts.
    """

    def __init__(
        self,
        connect_timeout: float = DEFAULT_SSH_CONNECT_TIMEOUT,
        retry_delay: float = DEFAULT_SSH_RETRY_DELAY,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.retry_delay = retry_delay
        self._sleep = sleep

    def connect(
        self,
        host: str,
        port: int,
        username: str,
        private_key: str,
        *,
        attempts: int,
    ) -> SSHSession:
        try:
            pkey = load_private_key(private_key)
        except ValueError as e:
            raise SSHConnectionError(host, 0, str(e)) from e

        def do_connect() -> paramiko.SSHClient:
            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                client.connect(
                    hostname=host,
                    port=port,
                    username=username,
                    pkey=pkey,
                    timeout=self.connect_timeout,
                    banner_timeout=self.connect_timeout,
                    auth_timeout=self.connect_timeout,
                    look_for_keys=False,
                    allow_agent=False,
                )
            except BaseException:
                client.close()
                raise
            return client

        logger.debug(f"SSH: connecting to {host}:{port} ({username})")
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(attempts),
                wait=wait_fixed(self.retry_delay),
                retry=retry_if_exception_type(_RETRYABLE),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    client = do_connect()
        except _RETRYABLE as e:
            raise SSHConnectionError(host, attempts, str(e)) from e

        logger.debug(f"SSH: connected to {host}")
        return SSHSession(client, host)
