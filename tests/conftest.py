"""Shared pytest fixtures for the uiadriver test suite."""

from __future__ import annotations

from functools import partial
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from uiadriver.config import Settings
from uiadriver.shared.enums import DeviceType, DeviceVariation
from uiadriver.shared.models import DeviceDescriptor, InstrumentsVersion

PREPARATION_STEPS = (
    "set_variation",
    "set_sdk_version",
    "reset_content_and_settings",
    "set_l10n",
    "set_keyboard_options",
    "set_location_preference",
    "set_mobile_safari_options",
)


def _record(log: list[str], name: str, *_args: object, **_kwargs: object) -> None:
    log.append(name)


@pytest.fixture()
def settings() -> Settings:
    """Return a Settings instance with test defaults."""
    return Settings(
        instruments_bin="/usr/bin/instruments",
        automation_template="/tmp/Automation.tracetemplate",
        handshake_timeout_seconds=1.0,
        command_timeout_seconds=2.0,
    )


@pytest.fixture()
def device() -> DeviceDescriptor:
    return DeviceDescriptor(
        device=DeviceType.IPHONE,
        variation=DeviceVariation.RETINA_4INCH,
        sdk_version="7.1",
        locale="fr_FR",
        language="fr",
    )


@pytest.fixture()
def version() -> InstrumentsVersion:
    return InstrumentsVersion(version="5.1", build="55045")


@pytest.fixture()
def call_log() -> list[str]:
    """Ordered names of preparation/cleanup calls made on the device."""
    return []


@pytest.fixture()
def mock_preparer(call_log: list[str]) -> AsyncMock:
    preparer = AsyncMock()
    for name in (*PREPARATION_STEPS, "cleanup_device"):
        getattr(preparer, name).side_effect = partial(_record, call_log, name)
    return preparer


@pytest.fixture()
def mock_application(call_log: list[str]) -> MagicMock:
    app = MagicMock()
    app.bundle_path = Path("/apps/Demo.app")
    app.set_default_device.side_effect = partial(_record, call_log, "set_default_device")
    return app


@pytest.fixture()
def mock_resolver() -> MagicMock:
    resolver = MagicMock()
    resolver.instruments_path.return_value = Path("/usr/bin/instruments")
    resolver.automation_template.return_value = Path("/tmp/Automation.tracetemplate")
    return resolver
