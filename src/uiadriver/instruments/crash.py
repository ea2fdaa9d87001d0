"""Detects instruments or the target application dying mid-session."""

from __future__ import annotations

import asyncio
import logging

from uiadriver.instruments.session import CrashRecord, ProcessExit

logger = logging.getLogger(__name__)

# Lines instruments prints when the automation run can no longer proceed.
FATAL_OUTPUT_MARKERS = (
    "The target application appears to have died",
    "UIAScriptAgentSignaledException",
    "Script threw an uncaught JavaScript error",
    "Instruments Trace Error",
)


class CrashMonitor:
    """Process listener holding a set-once crash record.

    Exits triggered by ``ProcessHandle.force_stop`` are not crashes. The first
    unexpected exit or fatal output line wins; later events are ignored.
    """

    def __init__(self) -> None:
        self._record: CrashRecord | None = None
        self._tail: list[str] = []
        self._event = asyncio.Event()

    @property
    def crashed(self) -> bool:
        return self._record is not None

    @property
    def record(self) -> CrashRecord | None:
        return self._record

    async def wait(self) -> CrashRecord:
        """Block until a crash is recorded."""
        while self._record is None:
            await self._event.wait()
        return self._record

    def on_output(self, line: str) -> None:
        self._tail.append(line)
        del self._tail[:-20]
        for marker in FATAL_OUTPUT_MARKERS:
            if marker in line:
                self._set(CrashRecord(reason=line.strip(), output_tail=tuple(self._tail)))
                return

    def on_exit(self, event: ProcessExit) -> None:
        if event.expected:
            return
        self._set(
            CrashRecord(
                reason="instruments exited unexpectedly",
                returncode=event.returncode,
                output_tail=tuple(self._tail),
            )
        )

    def _set(self, record: CrashRecord) -> None:
        if self._record is not None:
            return
        logger.error("crash detected: %s", record.describe())
        self._record = record
        self._event.set()
