import asyncio
import contextlib
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

from chronicle.services.manager import BaseAsyncLoggingService

if TYPE_CHECKING:
    from chronicle.context import Context

LOG_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}

# -------------------------------------------------------------- #
# Async Logging Service
# -------------------------------------------------------------- #


class AsyncLoggingService(BaseAsyncLoggingService):
    """Queue-backed logger; a single writer task appends lines to the log file."""

    def __init__(
        self,
        context: "Context",
        log_dir: str = "logs",
        log_file: str | None = None,
        min_level: str = "INFO",
        console_output: bool = True,
    ):
        """Initialize the async logging service.

        Args:
            context: Context instance containing server and services
            log_dir: Directory to store log files
            log_file: Name of the log file. Defaults to a timestamped
                      `app_<date>_<time>.log`.
            min_level: Lines below this level are dropped before queueing
            console_output: If True, lines are also printed to stdout
        """
        super().__init__(context)
        self.log_dir = Path(log_dir)
        self.console_output = console_output
        self.min_level = LOG_LEVELS.get(min_level.upper(), LOG_LEVELS["INFO"])

        if log_file is None:
            log_file = f"app_{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}.log"
        self.log_path = self.log_dir / log_file

        self._write_lock = asyncio.Lock()
        self._log_queue: asyncio.Queue[str] = asyncio.Queue()
        self._writer_task: asyncio.Task | None = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._writer_task = asyncio.create_task(self._process_log_queue())
        await self.info(f"AsyncLoggingService initialized. Logging to: {self.log_path}")

    async def on_close(self) -> None:
        """Stop the writer and flush whatever is still queued."""
        await super().on_close()

        if self._writer_task:
            # let the writer finish the line it holds before cancelling it
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._log_queue.join(), timeout=2.0)
            self._writer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer_task
            self._writer_task = None

        await self._flush_queue()

    # -------------------------------------------------------------- #
    # Public Logging Methods
    # -------------------------------------------------------------- #

    async def log(self, message: str, level: str = "INFO") -> None:
        """Queue a log message.

        Args:
            message: The log message
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        """
        if LOG_LEVELS.get(level, LOG_LEVELS["INFO"]) < self.min_level:
            return

        timestamp = datetime.now().isoformat()
        await self._log_queue.put(f"[{timestamp}] [{level}] {message}")

    async def debug(self, message: str) -> None:
        await self.log(message, "DEBUG")

    async def info(self, message: str) -> None:
        await self.log(message, "INFO")

    async def warning(self, message: str) -> None:
        await self.log(message, "WARNING")

    async def error(self, message: str) -> None:
        await self.log(message, "ERROR")

    async def critical(self, message: str) -> None:
        await self.log(message, "CRITICAL")

    async def drain(self) -> None:
        """Wait until every queued line has been written."""
        if self._writer_task and not self._writer_task.done():
            await self._log_queue.join()
        else:
            await self._flush_queue()

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _process_log_queue(self) -> None:
        while True:
            message = await self._log_queue.get()
            try:
                await self._write_line(message)
            finally:
                self._log_queue.task_done()

    async def _write_line(self, message: str) -> None:
        if self.console_output:
            print(message, file=sys.stdout, flush=True)

        async with self._write_lock:
            try:
                async with aiofiles.open(self.log_path, mode="a", encoding="utf-8") as f:
                    await f.write(message + "\n")
            except OSError as e:
                print(f"[ERROR] Failed to write to log file: {e}", file=sys.stderr, flush=True)

    async def _flush_queue(self) -> None:
        while not self._log_queue.empty():
            message = self._log_queue.get_nowait()
            await self._write_line(message)
            self._log_queue.task_done()
