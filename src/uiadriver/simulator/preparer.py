"""Simulator preparation steps run before instruments is launched."""

from __future__ import annotations

import logging
from typing import Any

from uiadriver.shared.enums import DeviceType, DeviceVariation
from uiadriver.shared.exceptions import DevicePreparationError, SimctlError
from uiadriver.shared.models import DeviceDescriptor
from uiadriver.simulator.simctl import SimctlClient

logger = logging.getLogger(__name__)

# Simulator device-type names per (family, variation).
_DEVICE_NAMES: dict[tuple[DeviceType, DeviceVariation], str] = {
    (DeviceType.IPHONE, DeviceVariation.REGULAR): "iPhone",
    (DeviceType.IPHONE, DeviceVariation.RETINA): "iPhone Retina (3.5-inch)",
    (DeviceType.IPHONE, DeviceVariation.RETINA_4INCH): "iPhone Retina (4-inch)",
    (DeviceType.IPHONE, DeviceVariation.RETINA_4INCH_64BIT): "iPhone Retina (4-inch 64-bit)",
    (DeviceType.IPAD, DeviceVariation.REGULAR): "iPad",
    (DeviceType.IPAD, DeviceVariation.RETINA): "iPad Retina",
    (DeviceType.IPAD, DeviceVariation.RETINA_4INCH_64BIT): "iPad Retina (64-bit)",
}

_GLOBAL_DOMAIN = "-g"
_PREFERENCES_DOMAIN = "com.apple.Preferences"
_LOCATION_DOMAIN = "com.apple.locationd"
_SAFARI_DOMAIN = "com.apple.mobilesafari"


def _bool(value: bool) -> tuple[str, str]:
    return ("-bool", "YES" if value else "NO")


class SimulatorPreparer:
    """``DevicePreparer`` backed by ``xcrun simctl``.

    ``set_variation`` picks the simulator; every later step targets it.
    A fixed ``udid`` skips the lookup.
    """

    def __init__(self, simctl: SimctlClient, *, udid: str | None = None) -> None:
        self._simctl = simctl
        self._fixed_udid = udid
        self._udid: str | None = udid
        self._runtime: str | None = None

    @property
    def udid(self) -> str | None:
        return self._udid

    async def set_variation(self, device: DeviceDescriptor) -> None:
        if self._fixed_udid:
            return
        name = _DEVICE_NAMES.get((device.device, device.variation))
        if name is None:
            raise DevicePreparationError(f"unsupported variation {device.variation.value} for {device.device.value}")
        candidates = await self._candidates(name)
        if not candidates:
            raise DevicePreparationError(f"no available simulator named {name!r}")
        self._runtime, entry = candidates[0]
        self._udid = entry["udid"]
        logger.info("selected simulator %s (%s, %s)", name, self._udid, self._runtime)

    async def set_sdk_version(self, device: DeviceDescriptor) -> None:
        if not device.sdk_version or self._fixed_udid:
            return
        name = _DEVICE_NAMES.get((device.device, device.variation), "")
        wanted = device.sdk_version.replace(".", "-")
        for runtime, entry in await self._candidates(name):
            if runtime.endswith(wanted):
                self._runtime = runtime
                self._udid = entry["udid"]
                logger.info("selected SDK %s for simulator %s", device.sdk_version, self._udid)
                return
        raise DevicePreparationError(f"SDK {device.sdk_version} is not installed for {name!r}")

    async def reset_content_and_settings(self) -> None:
        udid = self._require_udid()
        await self._step("reset content and settings", self._erase(udid))

    async def set_l10n(self, locale: str, language: str) -> None:
        udid = self._require_udid()
        await self._step("set locale", self._simctl.write_default(udid, _GLOBAL_DOMAIN, "AppleLocale", locale))
        await self._step(
            "set language",
            self._simctl.write_default(udid, _GLOBAL_DOMAIN, "AppleLanguages", "-array", language),
        )

    async def set_keyboard_options(self, device: DeviceDescriptor) -> None:
        udid = self._require_udid()
        await self._step(
            "set keyboard autocorrection",
            self._simctl.write_default(
                udid, _PREFERENCES_DOMAIN, "KeyboardAutocorrection", *_bool(device.keyboard_autocorrection)
            ),
        )
        await self._step(
            "set keyboard autocapitalization",
            self._simctl.write_default(
                udid, _PREFERENCES_DOMAIN, "KeyboardAutocapitalization", *_bool(device.keyboard_autocapitalization)
            ),
        )

    async def set_location_preference(self, enabled: bool) -> None:
        udid = self._require_udid()
        await self._step(
            "set location services",
            self._simctl.write_default(udid, _LOCATION_DOMAIN, "LocationServicesEnabled", *_bool(enabled)),
        )

    async def set_mobile_safari_options(self, device: DeviceDescriptor) -> None:
        udid = self._require_udid()
        await self._step(
            "set safari fraud warnings",
            self._simctl.write_default(
                udid, _SAFARI_DOMAIN, "WarnAboutFraudulentWebsites", *_bool(device.safari_fraud_warnings)
            ),
        )
        await self._step(
            "set safari background links",
            self._simctl.write_default(
                udid, _SAFARI_DOMAIN, "OpenLinksInBackground", *_bool(device.safari_open_links_in_background)
            ),
        )

    async def cleanup_device(self) -> None:
        if self._udid is None:
            return
        try:
            await self._simctl.shutdown(self._udid)
        except SimctlError as exc:
            raise DevicePreparationError(f"failed to shut down simulator {self._udid}: {exc}") from exc
        logger.info("simulator %s shut down", self._udid)

    async def _erase(self, udid: str) -> None:
        await self._simctl.shutdown(udid)
        await self._simctl.erase(udid)

    async def _candidates(self, name: str) -> list[tuple[str, dict[str, Any]]]:
        """Devices named ``name`` as (runtime, entry), newest runtime first."""
        try:
            devices = await self._simctl.list_devices()
        except SimctlError as exc:
            raise DevicePreparationError(f"cannot list simulators: {exc}") from exc
        found = [
            (runtime, entry)
            for runtime, entries in devices.items()
            for entry in entries
            if entry.get("name") == name and entry.get("udid")
        ]
        return sorted(found, key=lambda item: item[0], reverse=True)

    def _require_udid(self) -> str:
        if self._udid is None:
            raise DevicePreparationError("no simulator selected, call set_variation() first")
        return self._udid

    @staticmethod
    async def _step(label: str, action: Any) -> None:
        try:
            await action
        except SimctlError as exc:
            raise DevicePreparationError(f"{label} failed: {exc}") from exc
