"""Command-line entry point: run one instruments session fed from stdin."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import uuid
from functools import partial
from typing import TextIO

from uiadriver.config import Settings, get_settings
from uiadriver.instruments.controller import InstrumentsSession
from uiadriver.instruments.resolver import InstrumentsResolver
from uiadriver.instruments.server import ChannelServer
from uiadriver.shared.exceptions import CommandTimeoutError, SessionStartError, UiaDriverError
from uiadriver.simulator.application import IOSApplication
from uiadriver.simulator.preparer import SimulatorPreparer
from uiadriver.simulator.simctl import SimctlClient

logger = logging.getLogger(__name__)


def build_session(settings: Settings, app_path: str, *, session_id: str | None = None) -> InstrumentsSession:
    """Wire a session and its collaborators from settings."""
    session_id = session_id or uuid.uuid4().hex
    resolver = InstrumentsResolver(
        instruments_bin=settings.instruments_bin,
        automation_template=settings.automation_template,
        xcrun_bin=settings.xcrun_bin,
        xcode_select_bin=settings.xcode_select_bin,
    )
    preparer = SimulatorPreparer(
        SimctlClient(xcrun_bin=settings.xcrun_bin, timeout=settings.simctl_timeout_seconds),
        udid=settings.device_uuid or None,
    )
    return InstrumentsSession(
        session_id,
        IOSApplication(app_path),
        settings.device_descriptor,
        preparer=preparer,
        resolver=resolver,
        version=settings.version,
        device_uuid=settings.device_uuid or None,
        environment=settings.environment_params,
        handshake_timeout=settings.handshake_timeout_seconds,
        command_timeout=settings.command_timeout_seconds,
        warmup_timeout=settings.warmup_timeout_seconds,
        stop_grace=settings.stop_grace_seconds,
        tmp_root=settings.tmp_root or None,
        server_factory=partial(
            ChannelServer,
            host=settings.channel_host,
            port=settings.channel_port,
            poll_timeout=settings.channel_poll_timeout_seconds,
        ),
    )


async def run_session(session: InstrumentsSession, commands: TextIO, out: TextIO, *, warm_up: bool = True) -> int:
    """Start ``session``, execute one script per input line, print JSON responses.

    Returns:
        Process exit code: 0 on success, 1 if the session failed to start.
    """
    if warm_up and not await session.warm_up():
        logger.warning("warm-up failed; starting session %s anyway", session.session_id)

    try:
        await session.start()
    except SessionStartError as exc:
        logger.error("session %s failed to start: %s", session.session_id, exc)
        await session.stop()
        return 1

    try:
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, commands.readline)
            if not line:
                break
            script = line.strip()
            if not script:
                continue
            try:
                response = await session.execute_command(script)
            except CommandTimeoutError as exc:
                logger.error("command timed out: %s", exc)
                out.write(json.dumps({"status": -1, "value": str(exc)}) + "\n")
                continue
            except UiaDriverError as exc:
                logger.error("session %s can no longer execute commands: %s", session.session_id, exc)
                break
            out.write(response.model_dump_json() + "\n")
            out.flush()
    finally:
        await session.stop()
    return 0


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if len(sys.argv) != 2:
        sys.stderr.write("usage: uiadriver-session /path/to/App.app < commands.js\n")
        raise SystemExit(2)
    settings = get_settings()
    session = build_session(settings, sys.argv[1])
    raise SystemExit(asyncio.run(run_session(session, sys.stdin, sys.stdout)))


if __name__ == "__main__":
    main()
