"""Application bundle under test."""

from __future__ import annotations

import logging
import plistlib
from pathlib import Path

from uiadriver.shared.exceptions import DevicePreparationError
from uiadriver.shared.models import DeviceDescriptor

logger = logging.getLogger(__name__)


class IOSApplication:
    """A simulator ``.app`` bundle.

    Binding the bundle to a device rewrites ``UIDeviceFamily`` in its
    Info.plist so the simulator launches it on the requested family.
    """

    def __init__(self, bundle_path: str | Path) -> None:
        self._bundle_path = Path(bundle_path).absolute()

    @property
    def bundle_path(self) -> Path:
        return self._bundle_path

    @property
    def info_plist(self) -> Path:
        return self._bundle_path / "Info.plist"

    def bundle_id(self) -> str | None:
        try:
            return self._read_plist().get("CFBundleIdentifier")
        except DevicePreparationError:
            return None

    def set_default_device(self, device: DeviceDescriptor) -> None:
        """Restrict the bundle to ``device``'s family.

        Raises:
            DevicePreparationError: If Info.plist cannot be read or written.
        """
        info = self._read_plist()
        family = [device.device.family]
        if info.get("UIDeviceFamily") == family:
            return
        info["UIDeviceFamily"] = family
        try:
            with self.info_plist.open("wb") as f:
                plistlib.dump(info, f, fmt=plistlib.FMT_BINARY)
        except OSError as exc:
            raise DevicePreparationError(f"cannot update {self.info_plist}: {exc}") from exc
        logger.info("bound %s to device family %s", self._bundle_path.name, device.device.value)

    def _read_plist(self) -> dict:
        try:
            with self.info_plist.open("rb") as f:
                data = plistlib.load(f)
        except (OSError, plistlib.InvalidFileException) as exc:
            raise DevicePreparationError(f"cannot read {self.info_plist}: {exc}") from exc
        if not isinstance(data, dict):
            raise DevicePreparationError(f"{self.info_plist} is not a dictionary plist")
        return data
