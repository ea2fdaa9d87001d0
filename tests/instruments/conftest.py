"""Fakes for driving InstrumentsSession without instruments or uvicorn."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from uiadriver.instruments.channel import CommandChannel
from uiadriver.instruments.controller import InstrumentsSession
from uiadriver.instruments.session import ProcessExit
from uiadriver.shared.exceptions import ChannelStoppedError
from uiadriver.shared.models import DeviceDescriptor, InstrumentsVersion, ScriptResponse


class FakeChannelServer:
    """Stands in for ChannelServer; the channel is driven in-process."""

    def __init__(self, channel: CommandChannel) -> None:
        self.channel = channel
        self.base_url = "http://127.0.0.1:5555"
        self.start_calls = 0
        self.stop_calls = 0

    async def start(self) -> int:
        self.start_calls += 1
        return 5555

    async def stop(self) -> None:
        self.stop_calls += 1
        self.channel.stop()


class FakeProcess:
    """Stands in for ProcessHandle; ``behaviour`` plays the automation script."""

    def __init__(
        self,
        args: list[str],
        channel: CommandChannel,
        behaviour: Callable[[FakeProcess], Awaitable[None]] | None,
        returncode: int = 0,
    ) -> None:
        self.args = list(args)
        self.channel = channel
        self.listeners: list[Any] = []
        self.cwd: Path | None = None
        self.start_calls = 0
        self.force_stop_calls = 0
        self.seen_scripts: list[str] = []
        self._behaviour = behaviour
        self._returncode = returncode
        self._task: asyncio.Task[None] | None = None

    def register_listener(self, listener: Any) -> None:
        self.listeners.append(listener)

    def set_working_directory(self, path: Path) -> None:
        self.cwd = path

    async def start(self) -> None:
        self.start_calls += 1
        if self._behaviour is not None:
            self._task = asyncio.create_task(self._behaviour(self))

    async def force_stop(self) -> None:
        self.force_stop_calls += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    async def wait(self) -> int:
        return self._returncode

    def exit(self, returncode: int, *, expected: bool = False) -> None:
        for listener in self.listeners:
            listener.on_exit(ProcessExit(pid=4242, returncode=returncode, expected=expected))


async def registers_and_echoes(proc: FakeProcess) -> None:
    await asyncio.sleep(0.05)
    proc.channel.register()
    while True:
        try:
            request = await proc.channel.next_request(timeout=1.0)
        except ChannelStoppedError:
            return
        if request is None:
            continue
        proc.seen_scripts.append(request.script)
        await asyncio.sleep(0.01)
        proc.channel.deliver_response(ScriptResponse(id=request.id, status=0, value=request.script))


async def crashes(proc: FakeProcess) -> None:
    await asyncio.sleep(0.05)
    proc.exit(139)


async def crashes_while_registering(proc: FakeProcess) -> None:
    await asyncio.sleep(0.05)
    proc.exit(1)
    proc.channel.register()


@dataclass
class SessionRig:
    session: InstrumentsSession
    processes: list[FakeProcess] = field(default_factory=list)
    servers: list[FakeChannelServer] = field(default_factory=list)

    @property
    def process(self) -> FakeProcess:
        return self.processes[0]

    @property
    def server(self) -> FakeChannelServer:
        return self.servers[0]


@pytest.fixture()
def make_session(
    device: DeviceDescriptor,
    version: InstrumentsVersion,
    mock_preparer: AsyncMock,
    mock_application: MagicMock,
    mock_resolver: MagicMock,
    tmp_path: Path,
) -> Callable[..., SessionRig]:
    def _make(
        behaviour: Callable[[FakeProcess], Awaitable[None]] | None = None,
        *,
        returncode: int = 0,
        **kwargs: Any,
    ) -> SessionRig:
        rig_processes: list[FakeProcess] = []
        rig_servers: list[FakeChannelServer] = []

        def server_factory(channel: CommandChannel) -> FakeChannelServer:
            server = FakeChannelServer(channel)
            rig_servers.append(server)
            return server

        def process_factory(args: list[str], *, stop_timeout: float = 5.0) -> FakeProcess:
            proc = FakeProcess(args, rig_servers[0].channel, behaviour, returncode=returncode)
            rig_processes.append(proc)
            return proc

        kwargs.setdefault("handshake_timeout", 1.0)
        kwargs.setdefault("command_timeout", 2.0)
        kwargs.setdefault("tmp_root", str(tmp_path))
        session = InstrumentsSession(
            "session-42",
            mock_application,
            device,
            preparer=mock_preparer,
            resolver=mock_resolver,
            version=version,
            process_factory=process_factory,
            server_factory=server_factory,
            **kwargs,
        )
        return SessionRig(session, rig_processes, rig_servers)

    return _make


@pytest.fixture()
def behaviours() -> SimpleNamespace:
    """Scripted behaviours for FakeProcess."""
    return SimpleNamespace(
        echo=registers_and_echoes,
        crash=crashes,
        crash_while_registering=crashes_while_registering,
    )
