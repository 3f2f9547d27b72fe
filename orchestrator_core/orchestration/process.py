"""
Managed child processes.

Wraps ``asyncio.subprocess.Process`` in an owned handle that:
- Starts the child detached in its own session / process group so the
  orchestrator's own signals do not reach it
- Forwards stdout/stderr lines to a per-service logger
- Terminates gracefully, then forcefully, then sweeps leftover children

Termination is best-effort: the OS process may ignore signals. Once a handle
is detached from the service table the orchestrator is no longer responsible
for the process, which does not guarantee that it is gone.
"""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import re
import signal
import subprocess
from typing import List, Optional

import psutil

from orchestrator_core.config.services import LaunchCommand

logger = logging.getLogger(__name__)

IS_WINDOWS = platform.system() == "Windows"

OUTPUT_CHUNK_SIZE = 64 * 1024
MAX_LINE_LENGTH = 64 * 1024
LINE_BREAK = re.compile(rb"\r\n|\r|\n")


class SpawnError(OSError):
    """The launch command could not be started, or exited immediately."""


class ManagedProcess:
    """Owned handle to one spawned OS process."""

    def __init__(
        self,
        service: str,
        process: asyncio.subprocess.Process,
        argv: List[str],
    ):
        self.service = service
        self.argv = argv
        self._process = process
        self._pgid: Optional[int] = None
        self._readers: List[asyncio.Task] = []
        self._output_logger = logging.getLogger(f"orchestrator_core.services.{service}")

        if not IS_WINDOWS:
            try:
                self._pgid = os.getpgid(process.pid)
            except ProcessLookupError:
                self._pgid = None

    @classmethod
    async def spawn(
        cls,
        service: str,
        command: LaunchCommand,
        grace_period: float = 0.5,
    ) -> "ManagedProcess":
        """
        Start ``command`` detached from the orchestrator.

        Args:
            service: Service name (used for log routing)
            command: Launch candidate to execute
            grace_period: Seconds to watch for an immediate failing exit

        Returns:
            The running process handle

        Raises:
            SpawnError: executable missing, not permitted, or exited non-zero
                within the grace period
        """
        argv = command.resolved_argv()
        cwd = command.resolved_cwd()

        process_env = os.environ.copy()
        process_env.update(dict(command.env))

        kwargs = {
            "cwd": str(cwd) if cwd else None,
            "env": process_env,
            "stdin": asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
        }
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # New session so SIGINT to the orchestrator does not reach the child
            kwargs["start_new_session"] = True

        logger.info(f"[Process] Spawning '{service}': {' '.join(argv)}")
        try:
            process = await asyncio.create_subprocess_exec(*argv, **kwargs)
        except OSError as e:
            raise SpawnError(f"{argv[0]}: {e.strerror or e}") from e

        managed = cls(service, process, argv)
        managed._start_readers()

        if grace_period > 0:
            try:
                await asyncio.wait_for(process.wait(), timeout=grace_period)
            except asyncio.TimeoutError:
                pass
            except asyncio.CancelledError:
                # Caller went away mid-grace; nobody else holds this handle
                logger.warning(
                    f"[Process] Spawn of '{service}' cancelled, stopping PID {process.pid}"
                )
                await managed.terminate(timeout=2.0)
                raise
            else:
                if process.returncode != 0:
                    await managed._finish_readers()
                    raise SpawnError(
                        f"{argv[0]} exited immediately with code {process.returncode}"
                    )

        logger.info(f"[Process] '{service}' started with PID {process.pid}")
        return managed

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def is_alive(self) -> bool:
        return self._process.returncode is None

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        code = await self._process.wait()
        await self._finish_readers()
        return code

    async def terminate(self, timeout: float = 10.0) -> bool:
        """
        Stop the process gracefully, then forcefully if needed.

        Returns:
            True if the process is confirmed to have exited
        """
        if not self.is_alive:
            await self._finish_readers()
            return True

        logger.info(f"[Process] Stopping '{self.service}' (PID {self.pid})...")
        children = self._snapshot_children()

        try:
            # Step 1: SIGTERM to the whole group
            self._signal(graceful=True)
            try:
                await asyncio.wait_for(self._process.wait(), timeout=timeout)
                logger.info(f"[Process] '{self.service}' terminated gracefully")
            except asyncio.TimeoutError:
                logger.warning(
                    f"[Process] '{self.service}' did not terminate gracefully, "
                    f"sending SIGKILL..."
                )
                # Step 2: force kill
                self._signal(graceful=False)
                await asyncio.wait_for(self._process.wait(), timeout=5.0)
                logger.info(f"[Process] '{self.service}' killed forcefully")

        except ProcessLookupError:
            # Already exited; reap it
            try:
                await asyncio.wait_for(self._process.wait(), timeout=1.0)
            except asyncio.TimeoutError:
                pass
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"[Process] Error stopping '{self.service}': {e}")
            return False
        finally:
            # Step 3: children that escaped the group (zombie prevention)
            self._kill_survivors(children)
            await self._finish_readers()

        return not self.is_alive

    def _signal(self, graceful: bool) -> None:
        if IS_WINDOWS:
            if graceful:
                self._process.terminate()
            else:
                self._process.kill()
            return

        sig = signal.SIGTERM if graceful else signal.SIGKILL
        if self._pgid is not None:
            os.killpg(self._pgid, sig)
        else:
            self._process.send_signal(sig)

    def _snapshot_children(self) -> List[psutil.Process]:
        try:
            return psutil.Process(self.pid).children(recursive=True)
        except psutil.Error:
            return []

    def _kill_survivors(self, children: List[psutil.Process]) -> None:
        for child in children:
            try:
                if child.is_running():
                    logger.warning(
                        f"[Process] Leftover child of '{self.service}': {child.pid}, killing"
                    )
                    child.kill()
            except psutil.Error:
                pass

    def _start_readers(self) -> None:
        for stream in (self._process.stdout, self._process.stderr):
            if stream is not None:
                self._readers.append(asyncio.create_task(self._read_stream(stream)))

    async def _read_stream(self, stream: asyncio.StreamReader) -> None:
        """
        Forward each output line to the service logger.

        Reads in chunks and splits on newlines and carriage returns, so progress
        bars that never print a newline are forwarded too. The pipe is always
        drained until EOF.
        """
        pending = b""
        try:
            while True:
                chunk = await stream.read(OUTPUT_CHUNK_SIZE)
                if not chunk:
                    break
                *lines, pending = LINE_BREAK.split(pending + chunk)
                if len(pending) > MAX_LINE_LENGTH:
                    lines.append(pending)
                    pending = b""
                for line in lines:
                    self._log_output(line)
            self._log_output(pending)
        except OSError as e:
            logger.error(f"[Process] Error reading output of '{self.service}': {e}")

    def _log_output(self, line: bytes) -> None:
        text = line.decode(errors="replace").rstrip()
        if text:
            self._output_logger.info(text)

    async def _finish_readers(self) -> None:
        readers, self._readers = self._readers, []
        if not readers:
            return
        _, pending = await asyncio.wait(readers, timeout=1.0)
        for task in pending:
            task.cancel()

    def __repr__(self) -> str:
        state = "alive" if self.is_alive else f"exited({self.returncode})"
        return f"ManagedProcess(service={self.service!r}, pid={self.pid}, {state})"
