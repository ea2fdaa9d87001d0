"""Tests for the exception hierarchy."""

from __future__ import annotations

import pytest

from uiadriver.instruments.session import CrashRecord
from uiadriver.shared.exceptions import (
    ChannelNotReadyError,
    ChannelStoppedError,
    HandshakeInterruptedError,
    HandshakeTimeoutError,
    ProcessCrashedError,
    ResourceCreationError,
    SessionStartError,
    StartupFailureError,
    UiaDriverError,
)


@pytest.mark.parametrize(
    "exc_type",
    [StartupFailureError, ResourceCreationError, HandshakeTimeoutError, HandshakeInterruptedError, ProcessCrashedError],
)
def test_start_failures_share_a_base(exc_type: type[Exception]) -> None:
    assert issubclass(exc_type, SessionStartError)
    assert issubclass(exc_type, UiaDriverError)


def test_stopped_channel_is_not_ready() -> None:
    with pytest.raises(ChannelNotReadyError):
        raise ChannelStoppedError("stopped")


def test_crash_error_carries_record() -> None:
    record = CrashRecord(reason="exited", returncode=139)
    exc = ProcessCrashedError("instruments died", record)

    assert exc.record is record
    assert str(exc) == "instruments died"
    assert ProcessCrashedError("no record").record is None
