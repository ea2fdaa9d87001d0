"""Request/response command channel between the driver and the automation script."""

from __future__ import annotations

import asyncio
import itertools
import logging

from uiadriver.shared.enums import ChannelState
from uiadriver.shared.exceptions import (
    ChannelNotReadyError,
    ChannelStoppedError,
    CommandTimeoutError,
    HandshakeInterruptedError,
)
from uiadriver.shared.models import ScriptRequest, ScriptResponse

logger = logging.getLogger(__name__)


class CommandChannel:
    """Bridges ``execute_command`` callers and the script's polling loop.

    The script registers once (the handshake), then repeatedly asks for the
    next request while reporting the result of the previous one. Exactly one
    request is in flight at a time; concurrent callers queue on a lock.
    """

    def __init__(self, session_id: str, *, command_timeout: float = 60.0) -> None:
        self.session_id = session_id
        self._command_timeout = command_timeout
        self._state = ChannelState.NOT_READY
        self._ready = asyncio.Event()
        self._stopped = asyncio.Event()
        self._lock = asyncio.Lock()
        self._outbox: asyncio.Queue[ScriptRequest] = asyncio.Queue(maxsize=1)
        self._pending: tuple[int, asyncio.Future[ScriptResponse]] | None = None
        self._ids = itertools.count(1)

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is ChannelState.READY

    def register(self) -> None:
        """Mark the script as registered; called by the transport on handshake."""
        if self._state is ChannelState.STOPPED:
            raise ChannelStoppedError(f"channel for session {self.session_id} is stopped")
        if self._state is ChannelState.READY:
            logger.warning("session %s registered twice", self.session_id)
            return
        logger.info("automation script registered for session %s", self.session_id)
        self._state = ChannelState.READY
        self._ready.set()

    async def wait_for_ready(self, timeout: float) -> bool:
        """Wait until the script registers.

        Returns:
            True if the script registered, False on timeout or if the
            channel was stopped first.

        Raises:
            HandshakeInterruptedError: If the waiting task is cancelled.
        """
        logger.debug("waiting up to %.1fs for registration of session %s", timeout, self.session_id)
        registered = asyncio.create_task(self._ready.wait())
        stopped = asyncio.create_task(self._stopped.wait())
        try:
            done, _ = await asyncio.wait({registered, stopped}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError as exc:
            raise HandshakeInterruptedError(
                f"interrupted while waiting for session {self.session_id} to register"
            ) from exc
        finally:
            registered.cancel()
            stopped.cancel()
        if not done:
            logger.warning("session %s did not register within %.1fs", self.session_id, timeout)
            return False
        if self._state is ChannelState.STOPPED:
            logger.info("channel for session %s stopped before registration", self.session_id)
        return self._state is ChannelState.READY

    async def execute_command(self, script: str, *, timeout: float | None = None) -> ScriptResponse:
        """Send one script to the automation loop and wait for its response.

        Raises:
            ChannelNotReadyError: If the script has not registered or the channel stopped.
            ChannelStoppedError: If the channel stops while the command is in flight.
            CommandTimeoutError: If no response arrives in time.
        """
        self._ensure_ready()
        async with self._lock:
            self._ensure_ready()
            request = ScriptRequest(id=next(self._ids), script=script)
            future: asyncio.Future[ScriptResponse] = asyncio.get_running_loop().create_future()
            self._pending = (request.id, future)
            self._outbox.put_nowait(request)
            wait_seconds = self._command_timeout if timeout is None else timeout
            try:
                return await asyncio.wait_for(future, timeout=wait_seconds)
            except asyncio.TimeoutError as exc:
                raise CommandTimeoutError(f"no response to request {request.id} after {wait_seconds:.1f}s") from exc
            finally:
                self._pending = None
                self._drain_outbox()

    async def next_request(self, timeout: float) -> ScriptRequest | None:
        """Long-poll for the next request on behalf of the script.

        Returns:
            The request, or None when nothing was submitted within ``timeout``.

        Raises:
            ChannelStoppedError: If the channel is or becomes stopped.
        """
        if self._state is ChannelState.STOPPED:
            raise ChannelStoppedError(f"channel for session {self.session_id} is stopped")
        getter = asyncio.create_task(self._outbox.get())
        stopper = asyncio.create_task(self._stopped.wait())
        try:
            done, _ = await asyncio.wait({getter, stopper}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not getter.done():
                getter.cancel()
        if getter.done() and not getter.cancelled():
            request = getter.result()
            if self._state is ChannelState.STOPPED:
                raise ChannelStoppedError(f"channel for session {self.session_id} is stopped")
            return request
        if stopper in done:
            raise ChannelStoppedError(f"channel for session {self.session_id} is stopped")
        return None

    def deliver_response(self, response: ScriptResponse) -> None:
        """Resolve the in-flight request with the script's response."""
        pending = self._pending
        if pending is None or pending[0] != response.id:
            logger.warning("dropping response %d for session %s: no matching request", response.id, self.session_id)
            return
        future = pending[1]
        if not future.done():
            future.set_result(response)

    def stop(self) -> None:
        """Stop accepting commands and fail any in-flight request. Idempotent."""
        if self._state is ChannelState.STOPPED:
            return
        logger.info("stopping command channel for session %s", self.session_id)
        self._state = ChannelState.STOPPED
        self._stopped.set()
        pending = self._pending
        if pending is not None and not pending[1].done():
            pending[1].set_exception(ChannelStoppedError(f"channel for session {self.session_id} stopped"))
        self._drain_outbox()

    def _ensure_ready(self) -> None:
        if self._state is ChannelState.STOPPED:
            raise ChannelNotReadyError(f"channel for session {self.session_id} is stopped")
        if self._state is not ChannelState.READY:
            raise ChannelNotReadyError(f"session {self.session_id} has not registered yet")

    def _drain_outbox(self) -> None:
        while not self._outbox.empty():
            self._outbox.get_nowait()
