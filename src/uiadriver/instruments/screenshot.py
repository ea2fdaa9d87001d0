"""Screenshot capture through the running automation script."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path

import aiofiles  # type: ignore[import-untyped]

from uiadriver.shared.exceptions import UiaDriverError
from uiadriver.shared.models import ScriptResponse

logger = logging.getLogger(__name__)

# instruments writes captures under UIARESULTSPATH/"Run N"/<name>.png
_RUN_DIR_PREFIX = "Run "


class ScreenshotService:
    """Captures the simulator screen for one session.

    The capture is requested as an automation command; instruments then
    writes the PNG into the session's results folder, which is polled until
    the file appears.
    """

    def __init__(
        self,
        session_id: str,
        execute: Callable[[str], Awaitable[ScriptResponse]],
        results_dir: Callable[[], Path | None],
        *,
        timeout: float = 10.0,
        poll_interval: float = 0.2,
    ) -> None:
        self.session_id = session_id
        self._execute = execute
        self._results_dir = results_dir
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._counter = 0

    async def take_screenshot(self) -> bytes:
        """Capture the current screen and return the PNG bytes.

        Raises:
            UiaDriverError: If the capture command fails or no file appears.
        """
        results = self._results_dir()
        if results is None:
            raise UiaDriverError(f"session {self.session_id} has no results folder")

        self._counter += 1
        name = f"{self.session_id}-{self._counter}"
        response = await self._execute(f"UIATarget.localTarget().captureScreenWithName('{name}');")
        if not response.ok:
            raise UiaDriverError(f"screenshot command failed: {response.value}")

        path = await self._wait_for_file(results, f"{name}.png")
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        try:
            os.remove(path)
        except OSError as exc:
            logger.warning("could not remove screenshot %s: %s", path, exc)
        logger.info("captured screenshot %s (%d bytes)", name, len(data))
        return data

    async def _wait_for_file(self, results: Path, filename: str) -> Path:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        while True:
            found = _find_capture(results, filename)
            if found is not None:
                return found
            if loop.time() >= deadline:
                raise UiaDriverError(f"screenshot {filename} not written within {self._timeout:.1f}s")
            await asyncio.sleep(self._poll_interval)


def _find_capture(results: Path, filename: str) -> Path | None:
    direct = results / filename
    if direct.is_file():
        return direct
    if not results.is_dir():
        return None
    for run_dir in sorted(results.glob(f"{_RUN_DIR_PREFIX}*"), reverse=True):
        candidate = run_dir / filename
        if candidate.is_file():
            return candidate
    return None
