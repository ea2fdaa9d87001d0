"""Hierarchical exception types for the uiadriver session stack."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uiadriver.instruments.session import CrashRecord


class UiaDriverError(Exception):
    """Base exception for all uiadriver errors."""


class InvalidSessionStateError(UiaDriverError):
    """Operation is not allowed in the session's current state."""


# ── Tooling ─────────────────────────────────────────────────────


class ToolNotFoundError(UiaDriverError):
    """The instruments binary or automation template could not be located."""


class ProcessError(UiaDriverError):
    """External process could not be started or configured."""


class SimctlError(UiaDriverError):
    """``xcrun simctl`` invocation failed."""


class DevicePreparationError(UiaDriverError):
    """A device preparation step failed."""


# ── Session start ───────────────────────────────────────────────


class SessionStartError(UiaDriverError):
    """Instruments failed to start; all session resources were released."""


class StartupFailureError(SessionStartError):
    """Device preparation failed, the process was never launched."""


class ResourceCreationError(SessionStartError):
    """The session working directory could not be created."""


class HandshakeTimeoutError(SessionStartError):
    """The automation script did not register within the handshake timeout."""


class HandshakeInterruptedError(SessionStartError):
    """The handshake wait was cancelled by the caller."""


class ProcessCrashedError(SessionStartError):
    """Instruments exited or reported a fatal error before the handshake completed."""

    def __init__(self, message: str, record: CrashRecord | None = None) -> None:
        super().__init__(message)
        self.record = record


# ── Command channel ─────────────────────────────────────────────


class ChannelNotReadyError(UiaDriverError):
    """Command submitted while the channel is not ready."""


class ChannelStoppedError(ChannelNotReadyError):
    """The channel was stopped while a command was in flight."""


class CommandTimeoutError(UiaDriverError):
    """No response arrived for a command within the command timeout."""
