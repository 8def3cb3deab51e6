"""
Service session: a reachable client for the run, released on every exit path.

If the endpoint does not answer and ``start_server`` is enabled, the configured
server command is started and torn down again when the session closes.
"""

import asyncio
import logging
import os
import subprocess
import tempfile
from collections import deque
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional
from urllib.parse import urlparse

import httpx

from .client import ServiceClient
from .config import HarnessConfig
from .errors import ConnectivityError, ServiceError

logger = logging.getLogger(__name__)

HEALTH_POLL_INTERVAL_SECONDS = 0.5
SHUTDOWN_GRACE_SECONDS = 10.0
LOG_TAIL_LINES = 50


async def wait_until_healthy(client: ServiceClient, timeout_seconds: float) -> str:
    """Poll the version endpoint until it answers; return the reported version."""
    last_error: Optional[Exception] = None
    try:
        async with asyncio.timeout(timeout_seconds):
            while True:
                try:
                    return await client.version()
                except ServiceError as exc:
                    last_error = exc
                await asyncio.sleep(HEALTH_POLL_INTERVAL_SECONDS)
    except TimeoutError:
        raise ConnectivityError(
            f"server at {client.base_url} not healthy after {timeout_seconds:.0f}s: {last_error}"
        ) from None


def _temp_log_path() -> str:
    fd, name = tempfile.mkstemp(prefix="model-harness-server-", suffix=".log")
    os.close(fd)
    return name


class _ManagedServer:
    """A serving process started by the harness."""

    def __init__(self, command, base_url: str, log_path: Optional[str] = None):
        self.command = list(command)
        self.base_url = base_url
        self.log_path = Path(log_path or _temp_log_path())
        self._process: Optional[subprocess.Popen] = None
        self._log_file = None

    def start(self) -> None:
        env = dict(os.environ)
        parsed = urlparse(self.base_url)
        if parsed.netloc:
            env["OLLAMA_HOST"] = parsed.netloc

        logger.info("starting server: %s (log: %s)", " ".join(self.command), self.log_path)
        self._log_file = open(self.log_path, "w", encoding="utf-8")
        try:
            self._process = subprocess.Popen(
                self.command,
                stdout=self._log_file,
                stderr=subprocess.STDOUT,
                env=env,
            )
        except OSError as exc:
            self._log_file.close()
            raise ConnectivityError(f"failed to start server {self.command[0]}: {exc}") from exc

    async def stop(self) -> None:
        process = self._process
        if process is not None and process.poll() is None:
            process.terminate()
            try:
                await asyncio.to_thread(process.wait, SHUTDOWN_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                logger.warning("server did not exit after %.0fs, killing", SHUTDOWN_GRACE_SECONDS)
                process.kill()
                await asyncio.to_thread(process.wait)
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None

    def log_tail(self, lines: int = LOG_TAIL_LINES) -> str:
        try:
            with open(self.log_path, "r", encoding="utf-8", errors="replace") as f:
                return "".join(deque(f, maxlen=lines))
        except OSError:
            return ""


@asynccontextmanager
async def open_session(
    config: HarnessConfig,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AsyncIterator[ServiceClient]:
    """
    Yield a ServiceClient bound to a reachable service.

    Raises:
        ConnectivityError: the endpoint is unreachable and no server could be
            started
    """
    client = ServiceClient(
        base_url=config.base_url,
        timeout_seconds=config.request_timeout_seconds,
        http_client=http_client,
    )
    server: Optional[_ManagedServer] = None
    failed = False
    try:
        try:
            version = await client.version()
        except ServiceError as exc:
            if not config.start_server:
                raise ConnectivityError(
                    f"no server reachable at {config.base_url}: {exc}"
                ) from exc
            server = _ManagedServer(config.server_command, config.base_url, config.server_log_path)
            server.start()
            version = await wait_until_healthy(client, config.startup_timeout_seconds)

        logger.info("connected to %s (version %s)", config.base_url, version)
        yield client
    except BaseException:
        failed = True
        raise
    finally:
        await client.aclose()
        if server is not None:
            await server.stop()
            if failed:
                tail = server.log_tail()
                if tail:
                    logger.error("server log tail (%s):\n%s", server.log_path, tail)
