"""Loopback HTTP transport the automation script uses to reach the command channel."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from uiadriver.instruments.channel import CommandChannel
from uiadriver.shared.enums import ChannelState
from uiadriver.shared.exceptions import ChannelStoppedError, ProcessError
from uiadriver.shared.models import ScriptResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_channel(request: Request, session_id: str) -> CommandChannel:
    channel: CommandChannel = request.app.state.channel
    if session_id != channel.session_id:
        raise HTTPException(status_code=404, detail=f"unknown session: {session_id}")
    if channel.state is ChannelState.STOPPED:
        raise HTTPException(status_code=410, detail="session stopped")
    return channel


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    channel: CommandChannel = request.app.state.channel
    return {"status": "ok", "session_id": channel.session_id, "state": channel.state.value}


@router.post("/session/{session_id}/register")
async def register(session_id: str, request: Request) -> dict[str, str]:
    channel = _get_channel(request, session_id)
    try:
        channel.register()
    except ChannelStoppedError as exc:
        raise HTTPException(status_code=410, detail=str(exc)) from exc
    return {"status": "registered", "session_id": session_id}


@router.post("/session/{session_id}/next")
async def next_command(session_id: str, request: Request) -> Response:
    """Report the previous result (if any) and long-poll for the next script."""
    channel = _get_channel(request, session_id)
    body = await request.body()
    if body.strip():
        try:
            previous = ScriptResponse.model_validate_json(body)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=f"invalid script response: {exc}") from exc
        channel.deliver_response(previous)

    try:
        script_request = await channel.next_request(timeout=request.app.state.poll_timeout)
    except ChannelStoppedError as exc:
        raise HTTPException(status_code=410, detail=str(exc)) from exc
    if script_request is None:
        return Response(status_code=204)
    return JSONResponse(script_request.model_dump())


def create_channel_app(channel: CommandChannel, *, poll_timeout: float = 10.0) -> FastAPI:
    """Create the FastAPI application serving one session's channel."""
    app = FastAPI(title="uiadriver command channel", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.channel = channel
    app.state.poll_timeout = poll_timeout
    app.include_router(router)
    return app


class ChannelServer:
    """Serves a channel on a per-session loopback port with uvicorn.

    The socket is bound before serving so the port is known (and can be
    written into the automation script) even when the OS assigns it.
    """

    def __init__(
        self,
        channel: CommandChannel,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        poll_timeout: float = 10.0,
        startup_timeout: float = 10.0,
    ) -> None:
        self.channel = channel
        self._host = host
        self._requested_port = port
        self._startup_timeout = startup_timeout
        self.app = create_channel_app(channel, poll_timeout=poll_timeout)
        self._port: int | None = None
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        if self._port is None:
            raise ProcessError("channel server is not running")
        return self._port

    @property
    def base_url(self) -> str:
        return f"http://{self._host}:{self.port}"

    async def start(self) -> int:
        """Bind the listening socket and start serving.

        Returns:
            The bound port.

        Raises:
            ProcessError: If the socket cannot be bound or uvicorn fails to start.
        """
        if self._server is not None:
            return self.port

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._host, self._requested_port))
        except OSError as exc:
            sock.close()
            raise ProcessError(f"cannot bind channel on {self._host}:{self._requested_port}: {exc}") from exc
        self._port = sock.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            log_level="warning",
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=2,
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]), name=f"channel-{self.channel.session_id}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._startup_timeout
        while not self._server.started:
            if self._task.done() or loop.time() > deadline:
                await self.stop()
                raise ProcessError(f"channel server for session {self.channel.session_id} failed to start")
            await asyncio.sleep(0.05)

        logger.info("command channel for session %s listening on %s", self.channel.session_id, self.base_url)
        return self._port

    async def stop(self) -> None:
        """Stop the channel and release the listening port. Idempotent."""
        self.channel.stop()
        server, task = self._server, self._task
        self._server = None
        self._task = None
        if server is None or task is None:
            return
        server.should_exit = True
        try:
            await task
        except Exception as exc:  # pragma: no cover - shutdown errors are logged only
            logger.error("channel server for session %s stopped with error: %s", self.channel.session_id, exc)
        logger.info("command channel for session %s closed", self.channel.session_id)
