"""Asyncio wrapper around the external instruments process."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections import deque
from collections.abc import Sequence
from pathlib import Path

from uiadriver.instruments.interfaces import ProcessListener
from uiadriver.instruments.session import ProcessExit
from uiadriver.shared.exceptions import ProcessError

logger = logging.getLogger(__name__)

_OUTPUT_TAIL_LINES = 50
_READ_CHUNK = 64 * 1024


class ProcessHandle:
    """Owns at most one OS process for its whole lifetime.

    Listeners and the working directory are configured before ``start()``.
    Output is streamed line by line to every listener; exit is reported
    once, flagged as expected when ``force_stop()`` triggered it.

    The child leads its own process group so that helpers it spawns are
    signalled together with it.
    """

    def __init__(self, args: Sequence[str], *, stop_timeout: float = 5.0) -> None:
        if not args:
            raise ProcessError("empty command line")
        self._args = list(args)
        self._stop_timeout = stop_timeout
        self._cwd: Path | None = None
        self._listeners: list[ProcessListener] = []
        self._proc: asyncio.subprocess.Process | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._stop_requested = False
        self._tail: deque[str] = deque(maxlen=_OUTPUT_TAIL_LINES)

    @property
    def args(self) -> list[str]:
        return list(self._args)

    @property
    def working_directory(self) -> Path | None:
        return self._cwd

    @property
    def started(self) -> bool:
        return self._proc is not None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def returncode(self) -> int | None:
        return None if self._proc is None else self._proc.returncode

    @property
    def output_tail(self) -> tuple[str, ...]:
        return tuple(self._tail)

    def set_working_directory(self, path: Path) -> None:
        self._ensure_not_started("set working directory")
        self._cwd = Path(path)

    def register_listener(self, listener: ProcessListener) -> None:
        self._ensure_not_started("register listener")
        self._listeners.append(listener)

    async def start(self) -> None:
        """Spawn the process and begin delivering output/exit events.

        Raises:
            ProcessError: If already started or the binary cannot be executed.
        """
        self._ensure_not_started("start")
        logger.info("starting %s (cwd=%s)", " ".join(self._args), self._cwd)
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self._args,
                cwd=str(self._cwd) if self._cwd is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise ProcessError(f"binary not found: {self._args[0]}") from exc
        except OSError as exc:
            raise ProcessError(f"failed to start {self._args[0]}: {exc}") from exc
        self._watcher = asyncio.create_task(self._watch(self._proc), name=f"process-watch-{self._proc.pid}")

    async def force_stop(self) -> None:
        """Terminate the process group; no-op if never started or already stopped.

        Escalates to SIGKILL after ``stop_timeout``. If the output pipe is
        still held open once the group is gone, the watcher is detached so
        this call always returns.
        """
        if self._proc is None or self._watcher is None or self._stop_requested:
            return
        self._stop_requested = True
        proc, watcher = self._proc, self._watcher
        if proc.returncode is None:
            logger.info("force stopping pid %d", proc.pid)
        self._signal_group(proc, signal.SIGTERM)
        if not await self._finished(watcher, self._stop_timeout):
            logger.warning("pid %d ignored SIGTERM for %.1fs, killing", proc.pid, self._stop_timeout)
            self._signal_group(proc, signal.SIGKILL)
            if not await self._finished(watcher, self._stop_timeout):
                logger.error("output of pid %d still open after kill, detaching", proc.pid)
                watcher.cancel()
                await asyncio.gather(watcher, return_exceptions=True)

    async def wait(self) -> int:
        """Wait until the process exits and every listener has been notified.

        Cancelling the caller does not cancel the underlying watcher.
        """
        if self._proc is None or self._watcher is None:
            raise ProcessError("process was never started")
        await asyncio.wait({self._watcher})
        return self._proc.returncode if self._proc.returncode is not None else -1

    def _ensure_not_started(self, action: str) -> None:
        if self._proc is not None:
            raise ProcessError(f"cannot {action}: process already started")

    @staticmethod
    async def _finished(task: asyncio.Task[None], timeout: float) -> bool:
        done, _ = await asyncio.wait({task}, timeout=timeout)
        return bool(done)

    @staticmethod
    def _signal_group(proc: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        try:
            os.killpg(proc.pid, sig)
        except (ProcessLookupError, PermissionError):
            # group already gone
            if proc.returncode is None:
                try:
                    proc.send_signal(sig)
                except ProcessLookupError:
                    pass

    async def _watch(self, proc: asyncio.subprocess.Process) -> None:
        try:
            if proc.stdout is not None:
                await self._pump(proc.stdout)
            await proc.wait()
        finally:
            self._notify_exit(proc)

    async def _pump(self, stream: asyncio.StreamReader) -> None:
        # chunked reads: a single line may exceed the StreamReader limit
        pending = b""
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for raw in lines:
                self._emit_output(raw.decode(errors="replace").rstrip("\r"))
        if pending:
            self._emit_output(pending.decode(errors="replace").rstrip("\r"))

    def _notify_exit(self, proc: asyncio.subprocess.Process) -> None:
        returncode = proc.returncode if proc.returncode is not None else -1
        event = ProcessExit(pid=proc.pid, returncode=returncode, expected=self._stop_requested)
        if event.expected:
            logger.info("pid %d stopped (rc=%d)", proc.pid, returncode)
        else:
            logger.warning("pid %d exited unexpectedly (rc=%d)", proc.pid, returncode)
        for listener in self._listeners:
            try:
                listener.on_exit(event)
            except Exception as exc:  # pragma: no cover - listener bugs must not kill the watcher
                logger.error("process listener %r failed on exit: %s", listener, exc)

    def _emit_output(self, line: str) -> None:
        self._tail.append(line)
        logger.debug("instruments: %s", line)
        for listener in self._listeners:
            try:
                listener.on_output(line)
            except Exception as exc:  # pragma: no cover - listener bugs must not kill the watcher
                logger.error("process listener %r failed on output: %s", listener, exc)
