"""Tests for SimulatorPreparer."""

from __future__ import annotations

from unittest.mock import AsyncMock, call

import pytest

from uiadriver.instruments.interfaces import DevicePreparer
from uiadriver.shared.enums import DeviceType, DeviceVariation
from uiadriver.shared.exceptions import DevicePreparationError, SimctlError
from uiadriver.shared.models import DeviceDescriptor
from uiadriver.simulator.preparer import SimulatorPreparer

DEVICES = {
    "com.apple.CoreSimulator.SimRuntime.iOS-7-0": [
        {"name": "iPhone Retina (4-inch)", "udid": "OLD-4INCH"},
    ],
    "com.apple.CoreSimulator.SimRuntime.iOS-7-1": [
        {"name": "iPhone Retina (4-inch)", "udid": "NEW-4INCH"},
        {"name": "iPad", "udid": "IPAD-71"},
    ],
}


@pytest.fixture
def simctl() -> AsyncMock:
    mock = AsyncMock()
    mock.list_devices.return_value = DEVICES
    return mock


@pytest.fixture
def preparer(simctl: AsyncMock) -> SimulatorPreparer:
    return SimulatorPreparer(simctl)


@pytest.fixture
def iphone() -> DeviceDescriptor:
    return DeviceDescriptor(device=DeviceType.IPHONE, variation=DeviceVariation.RETINA_4INCH)


def test_satisfies_protocol(preparer: SimulatorPreparer) -> None:
    assert isinstance(preparer, DevicePreparer)


class TestSelection:
    async def test_variation_picks_newest_runtime(self, preparer: SimulatorPreparer, iphone: DeviceDescriptor) -> None:
        await preparer.set_variation(iphone)
        assert preparer.udid == "NEW-4INCH"

    async def test_sdk_version_narrows_runtime(self, preparer: SimulatorPreparer, iphone: DeviceDescriptor) -> None:
        device = iphone.model_copy(update={"sdk_version": "7.0"})
        await preparer.set_variation(device)
        await preparer.set_sdk_version(device)
        assert preparer.udid == "OLD-4INCH"

    async def test_missing_sdk(self, preparer: SimulatorPreparer, iphone: DeviceDescriptor) -> None:
        device = iphone.model_copy(update={"sdk_version": "8.0"})
        await preparer.set_variation(device)
        with pytest.raises(DevicePreparationError, match="SDK 8.0"):
            await preparer.set_sdk_version(device)

    async def test_no_matching_simulator(self, preparer: SimulatorPreparer) -> None:
        device = DeviceDescriptor(device=DeviceType.IPAD, variation=DeviceVariation.RETINA)
        with pytest.raises(DevicePreparationError, match="no available simulator"):
            await preparer.set_variation(device)

    async def test_unsupported_variation(self, preparer: SimulatorPreparer) -> None:
        device = DeviceDescriptor(device=DeviceType.IPAD, variation=DeviceVariation.RETINA_4INCH)
        with pytest.raises(DevicePreparationError, match="unsupported variation"):
            await preparer.set_variation(device)

    async def test_fixed_udid_skips_lookup(self, simctl: AsyncMock, iphone: DeviceDescriptor) -> None:
        preparer = SimulatorPreparer(simctl, udid="FIXED")
        await preparer.set_variation(iphone)
        await preparer.set_sdk_version(iphone.model_copy(update={"sdk_version": "7.0"}))

        assert preparer.udid == "FIXED"
        simctl.list_devices.assert_not_awaited()

    async def test_list_failure(self, preparer: SimulatorPreparer, simctl: AsyncMock, iphone: DeviceDescriptor) -> None:
        simctl.list_devices.side_effect = SimctlError("CoreSimulatorService connection invalid")
        with pytest.raises(DevicePreparationError, match="cannot list simulators"):
            await preparer.set_variation(iphone)


class TestSettings:
    async def test_steps_require_selection(self, preparer: SimulatorPreparer) -> None:
        with pytest.raises(DevicePreparationError, match="no simulator selected"):
            await preparer.reset_content_and_settings()

    async def test_reset_shuts_down_then_erases(self, simctl: AsyncMock) -> None:
        preparer = SimulatorPreparer(simctl, udid="U1")
        await preparer.reset_content_and_settings()

        simctl.shutdown.assert_awaited_once_with("U1")
        simctl.erase.assert_awaited_once_with("U1")

    async def test_l10n(self, simctl: AsyncMock) -> None:
        preparer = SimulatorPreparer(simctl, udid="U1")
        await preparer.set_l10n("fr_FR", "fr")

        assert simctl.write_default.await_args_list == [
            call("U1", "-g", "AppleLocale", "fr_FR"),
            call("U1", "-g", "AppleLanguages", "-array", "fr"),
        ]

    async def test_keyboard_location_and_safari(self, simctl: AsyncMock, iphone: DeviceDescriptor) -> None:
        preparer = SimulatorPreparer(simctl, udid="U1")
        await preparer.set_keyboard_options(iphone)
        await preparer.set_location_preference(True)
        await preparer.set_mobile_safari_options(iphone)

        written = [c.args[1:] for c in simctl.write_default.await_args_list]
        assert written == [
            ("com.apple.Preferences", "KeyboardAutocorrection", "-bool", "NO"),
            ("com.apple.Preferences", "KeyboardAutocapitalization", "-bool", "NO"),
            ("com.apple.locationd", "LocationServicesEnabled", "-bool", "YES"),
            ("com.apple.mobilesafari", "WarnAboutFraudulentWebsites", "-bool", "NO"),
            ("com.apple.mobilesafari", "OpenLinksInBackground", "-bool", "YES"),
        ]

    async def test_step_failure_is_wrapped(self, simctl: AsyncMock) -> None:
        simctl.write_default.side_effect = SimctlError("launchd failed")
        preparer = SimulatorPreparer(simctl, udid="U1")

        with pytest.raises(DevicePreparationError, match="set location services failed"):
            await preparer.set_location_preference(False)


class TestCleanup:
    async def test_without_selection_is_noop(self, preparer: SimulatorPreparer, simctl: AsyncMock) -> None:
        await preparer.cleanup_device()
        simctl.shutdown.assert_not_awaited()

    async def test_shuts_down_selected_device(self, simctl: AsyncMock) -> None:
        preparer = SimulatorPreparer(simctl, udid="U1")
        await preparer.cleanup_device()
        await preparer.cleanup_device()
        assert simctl.shutdown.await_count == 2

    async def test_failure(self, simctl: AsyncMock) -> None:
        simctl.shutdown.side_effect = SimctlError("boom")
        preparer = SimulatorPreparer(simctl, udid="U1")
        with pytest.raises(DevicePreparationError, match="U1"):
            await preparer.cleanup_device()
