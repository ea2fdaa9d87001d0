"""Instruments session lifecycle: prepare device → launch → handshake → run → stop."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from collections.abc import Callable, Sequence
from contextlib import AsyncExitStack
from pathlib import Path

from uiadriver.instruments.channel import CommandChannel
from uiadriver.instruments.crash import CrashMonitor
from uiadriver.instruments.interfaces import DevicePreparer, TargetApplication, ToolResolver
from uiadriver.instruments.process import ProcessHandle
from uiadriver.instruments.screenshot import ScreenshotService
from uiadriver.instruments.script import ScriptWriter, build_instruments_args
from uiadriver.instruments.server import ChannelServer
from uiadriver.instruments.session import CrashRecord
from uiadriver.shared.enums import SessionState
from uiadriver.shared.exceptions import (
    ChannelNotReadyError,
    DevicePreparationError,
    HandshakeInterruptedError,
    HandshakeTimeoutError,
    InvalidSessionStateError,
    ProcessCrashedError,
    ProcessError,
    ResourceCreationError,
    SessionStartError,
    StartupFailureError,
    ToolNotFoundError,
    UiaDriverError,
)
from uiadriver.shared.models import DeviceDescriptor, InstrumentsVersion, ScriptResponse

logger = logging.getLogger(__name__)

_STARTING = frozenset({SessionState.PREPARING, SessionState.LAUNCHING, SessionState.HANDSHAKING})

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CREATED: frozenset({SessionState.PREPARING, SessionState.STOPPING}),
    SessionState.PREPARING: frozenset({SessionState.LAUNCHING, SessionState.FAILED}),
    SessionState.LAUNCHING: frozenset({SessionState.HANDSHAKING, SessionState.FAILED}),
    SessionState.HANDSHAKING: frozenset({SessionState.READY, SessionState.FAILED}),
    SessionState.READY: frozenset({SessionState.RUNNING, SessionState.STOPPING}),
    SessionState.RUNNING: frozenset({SessionState.STOPPING}),
    SessionState.FAILED: frozenset({SessionState.STOPPING}),
    SessionState.STOPPING: frozenset({SessionState.STOPPED}),
    SessionState.STOPPED: frozenset(),
}

ProcessFactory = Callable[..., ProcessHandle]
ServerFactory = Callable[[CommandChannel], ChannelServer]


class InstrumentsSession:
    """One instruments run serving one test session.

    Owns the process handle, the command channel and its transport for its
    whole lifetime. Every failure inside ``start()`` goes through a single
    cleanup routine before the error reaches the caller; ``stop()`` reuses
    the same routine and may be called any number of times.
    """

    def __init__(
        self,
        session_id: str,
        application: TargetApplication,
        device: DeviceDescriptor,
        *,
        preparer: DevicePreparer,
        resolver: ToolResolver,
        version: InstrumentsVersion,
        device_uuid: str | None = None,
        environment: Sequence[str] = (),
        handshake_timeout: float = 30.0,
        command_timeout: float = 60.0,
        warmup_timeout: float = 120.0,
        stop_grace: float = 5.0,
        tmp_root: str | None = None,
        script_writer: ScriptWriter | None = None,
        process_factory: ProcessFactory = ProcessHandle,
        server_factory: ServerFactory = ChannelServer,
    ) -> None:
        self.session_id = session_id
        self._application = application
        self._device = device
        self._preparer = preparer
        self._resolver = resolver
        self._version = version
        self._device_uuid = device_uuid or None
        self._environment = list(environment)
        self._handshake_timeout = handshake_timeout
        self._warmup_timeout = warmup_timeout
        self._stop_grace = stop_grace
        self._tmp_root = tmp_root or None
        self._scripts = script_writer or ScriptWriter()
        self._process_factory = process_factory

        self._state = SessionState.CREATED
        self._output: Path | None = None
        self._process: ProcessHandle | None = None
        self._start_task: asyncio.Task[None] | None = None
        self._released = False
        self._crash_monitor = CrashMonitor()
        self._channel = CommandChannel(session_id, command_timeout=command_timeout)
        self._server = server_factory(self._channel)
        self._screenshots = ScreenshotService(session_id, self.execute_command, lambda: self._output)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def output(self) -> Path | None:
        """Working directory instruments writes its results into."""
        return self._output

    @property
    def channel(self) -> CommandChannel:
        return self._channel

    @property
    def process(self) -> ProcessHandle | None:
        return self._process

    @property
    def screenshot_service(self) -> ScreenshotService:
        return self._screenshots

    @property
    def crash_record(self) -> CrashRecord | None:
        return self._crash_monitor.record

    async def start(self) -> None:
        """Prepare the device, launch instruments and wait for the script to register.

        Raises:
            InvalidSessionStateError: If the session was already started or stopped.
            StartupFailureError: If a device preparation step failed.
            ResourceCreationError: If the working directory could not be created.
            ProcessCrashedError: If instruments died before registering.
            HandshakeTimeoutError: If the script did not register in time.
            HandshakeInterruptedError: If the caller was cancelled while waiting.
            SessionStartError: If instruments could not be launched at all.
        """
        if self._state is not SessionState.CREATED:
            raise InvalidSessionStateError(f"session {self.session_id} cannot start from {self._state.value}")
        self._start_task = asyncio.current_task()

        async with AsyncExitStack() as stack:
            stack.push_async_callback(self._abort_start)
            await self._prepare_device()
            await self._launch()
            await self._handshake()
            stack.pop_all()

        self._set_state(SessionState.READY)
        self._set_state(SessionState.RUNNING)
        logger.info("session %s running (output=%s)", self.session_id, self._output)

    async def stop(self) -> None:
        """Release the process, the device and the channel. Idempotent.

        A start still in progress in another task is interrupted first; it
        fails through its own cleanup before the session moves to STOPPING.
        """
        if self._state in (SessionState.STOPPING, SessionState.STOPPED):
            return
        start_task = self._start_task
        if self._state in _STARTING and start_task is not None and start_task is not asyncio.current_task():
            logger.info("stop requested while session %s is %s; interrupting start", self.session_id, self._state.value)
            start_task.cancel()
            await asyncio.wait({start_task})
            if self._state in (SessionState.STOPPING, SessionState.STOPPED):
                return
        self._set_state(SessionState.STOPPING)
        await self._release()
        self._set_state(SessionState.STOPPED)
        logger.info("session %s stopped", self.session_id)

    async def execute_command(self, script: str) -> ScriptResponse:
        """Run one automation script and return the script's response unchanged.

        Raises:
            ChannelNotReadyError: If the session is not running.
            CommandTimeoutError: If the script does not answer in time.
        """
        if self._state is not SessionState.RUNNING:
            raise ChannelNotReadyError(f"session {self.session_id} is {self._state.value}, not running")
        return await self._channel.execute_command(script)

    async def warm_up(self) -> bool:
        """Run a throwaway logging script to check instruments is usable.

        Not tracked by the session state; failures are logged and reported
        as False.
        """
        try:
            folder = Path(tempfile.mkdtemp(prefix=f"{self.session_id}-warmup-", dir=self._tmp_root))
        except OSError as exc:
            logger.warning("warm-up for session %s skipped: %s", self.session_id, exc)
            return False

        process: ProcessHandle | None = None
        try:
            script = self._scripts.write_warmup_script(folder)
            process = self._process_factory(await self._build_args(script, folder), stop_timeout=self._stop_grace)
            process.set_working_directory(folder)
            await process.start()
            returncode = await asyncio.wait_for(process.wait(), timeout=self._warmup_timeout)
        except asyncio.TimeoutError:
            logger.warning("warm-up for session %s timed out after %.1fs", self.session_id, self._warmup_timeout)
            return False
        except UiaDriverError as exc:
            logger.warning("warm-up for session %s failed: %s", self.session_id, exc)
            return False
        finally:
            if process is not None:
                await process.force_stop()
            shutil.rmtree(folder, ignore_errors=True)

        logger.info("warm-up for session %s finished (rc=%d)", self.session_id, returncode)
        return returncode == 0

    async def _prepare_device(self) -> None:
        self._set_state(SessionState.PREPARING)
        device = self._device
        logger.info("preparing %s %s for session %s", device.device.value, device.variation.value, self.session_id)
        try:
            await self._preparer.set_variation(device)
            self._application.set_default_device(device)
            await self._preparer.set_sdk_version(device)
            await self._preparer.reset_content_and_settings()
            await self._preparer.set_l10n(device.locale, device.language)
            await self._preparer.set_keyboard_options(device)
            await self._preparer.set_location_preference(device.location_enabled)
            await self._preparer.set_mobile_safari_options(device)
        except DevicePreparationError as exc:
            raise StartupFailureError(f"device preparation failed for session {self.session_id}: {exc}") from exc

    async def _launch(self) -> None:
        self._set_state(SessionState.LAUNCHING)
        self._output = self._create_output_folder()
        try:
            await self._server.start()
            script = self._scripts.write_session_script(
                self._output,
                base_url=self._server.base_url,
                session_id=self.session_id,
                app_path=self._application.bundle_path,
            )
            process = self._process_factory(await self._build_args(script, self._output), stop_timeout=self._stop_grace)
            process.register_listener(self._crash_monitor)
            process.set_working_directory(self._output)
            self._process = process
            await process.start()
        except (ProcessError, ToolNotFoundError) as exc:
            raise SessionStartError(f"cannot launch instruments for session {self.session_id}: {exc}") from exc

    async def _handshake(self) -> None:
        self._set_state(SessionState.HANDSHAKING)
        logger.info("waiting %.1fs for session %s to register", self._handshake_timeout, self.session_id)
        ready = asyncio.create_task(self._channel.wait_for_ready(self._handshake_timeout))
        crashed = asyncio.create_task(self._crash_monitor.wait())
        try:
            await asyncio.wait({ready, crashed}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError as exc:
            raise HandshakeInterruptedError(f"session {self.session_id} was interrupted while starting") from exc
        finally:
            crashed.cancel()
            if not ready.done():
                ready.cancel()
            await asyncio.gather(ready, crashed, return_exceptions=True)

        # A crash outranks a registration that raced with it.
        record = self._crash_monitor.record
        if record is not None:
            raise ProcessCrashedError(f"instruments crashed for session {self.session_id}: {record.describe()}", record)
        registered = ready.done() and not ready.cancelled() and ready.exception() is None and ready.result()
        if not registered:
            raise HandshakeTimeoutError(
                f"session {self.session_id} did not register within {self._handshake_timeout:.1f}s"
            )

    async def _abort_start(self) -> None:
        logger.error("session %s failed while %s; cleaning up", self.session_id, self._state.value)
        self._set_state(SessionState.FAILED)
        await self._release()

    async def _release(self) -> None:
        # device, then process, then channel; runs once per session
        if self._released:
            return
        self._released = True
        try:
            await self._preparer.cleanup_device()
        except Exception as exc:
            logger.error("device cleanup failed for session %s: %s", self.session_id, exc)
        if self._process is not None:
            try:
                await self._process.force_stop()
            except Exception as exc:
                logger.error("failed to stop instruments for session %s: %s", self.session_id, exc)
        try:
            await self._server.stop()
        except Exception as exc:
            logger.error("failed to close channel for session %s: %s", self.session_id, exc)

    def _create_output_folder(self) -> Path:
        try:
            return Path(tempfile.mkdtemp(prefix=f"{self.session_id}-", dir=self._tmp_root))
        except OSError as exc:
            raise ResourceCreationError(
                f"cannot create the tmp folder where instruments results for session {self.session_id} are stored"
            ) from exc

    async def _build_args(self, script: Path, results: Path) -> list[str]:
        # lookups may shell out to xcrun; keep them off the event loop
        instruments, template = await asyncio.to_thread(self._resolve_tools)
        return build_instruments_args(
            instruments=instruments,
            template=template,
            app_path=self._application.bundle_path,
            script=script,
            results=results,
            device_uuid=self._device_uuid,
            environment=self._environment,
        )

    def _resolve_tools(self) -> tuple[Path, Path]:
        return self._resolver.instruments_path(self._version), self._resolver.automation_template(self._version)

    def _set_state(self, new: SessionState) -> None:
        if new not in _TRANSITIONS[self._state]:
            raise InvalidSessionStateError(
                f"session {self.session_id}: illegal transition {self._state.value} -> {new.value}"
            )
        logger.debug("session %s: %s -> %s", self.session_id, self._state.value, new.value)
        self._state = new
