"""Thin async wrapper around ``xcrun simctl``."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from uiadriver.shared.exceptions import SimctlError

logger = logging.getLogger(__name__)


class SimctlClient:
    """Runs ``xcrun simctl`` commands through async subprocess calls."""

    def __init__(self, *, xcrun_bin: str = "xcrun", timeout: int = 60) -> None:
        self._xcrun_bin = xcrun_bin
        self._timeout = timeout

    async def list_devices(self) -> dict[str, list[dict[str, Any]]]:
        """Return available devices grouped by runtime identifier.

        Raises:
            SimctlError: If the listing fails or is not valid JSON.
        """
        stdout = await self.run("list", "--json", "devices", "available")
        try:
            payload = json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise SimctlError(f"unexpected simctl list output: {stdout[:200]}") from exc
        devices = payload.get("devices", {})
        if not isinstance(devices, dict):
            raise SimctlError("simctl list output has no 'devices' mapping")
        return devices

    async def shutdown(self, udid: str) -> None:
        """Shut a device down; already-shutdown devices are not an error."""
        stdout, stderr, rc = await self._exec("shutdown", udid)
        if rc != 0 and "current state: shutdown" not in stderr.lower():
            raise SimctlError(f"simctl shutdown {udid} failed (rc={rc}): {stderr or stdout}")

    async def erase(self, udid: str) -> None:
        await self.run("erase", udid)

    async def write_default(self, udid: str, domain: str, key: str, *value: str) -> None:
        """Run ``defaults write`` inside the simulator."""
        await self.run("spawn", udid, "defaults", "write", domain, key, *value)

    async def run(self, *args: str) -> str:
        """Run a simctl subcommand and return stdout.

        Raises:
            SimctlError: If the command fails, times out, or xcrun is missing.
        """
        stdout, stderr, rc = await self._exec(*args)
        if rc != 0:
            raise SimctlError(f"simctl {' '.join(args)} failed (rc={rc}): {stderr or stdout}")
        return stdout

    async def _exec(self, *args: str) -> tuple[str, str, int]:
        """Run a simctl command and return (stdout, stderr, returncode)."""
        cmd = [self._xcrun_bin, "simctl", *args]
        logger.debug("running %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise SimctlError(f"simctl command timed out: {' '.join(cmd)}") from exc
        except FileNotFoundError as exc:
            raise SimctlError(f"xcrun binary not found: {self._xcrun_bin}") from exc

        return (
            stdout_b.decode(errors="replace").strip(),
            stderr_b.decode(errors="replace").strip(),
            proc.returncode or 0,
        )
