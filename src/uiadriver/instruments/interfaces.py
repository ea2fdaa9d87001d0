"""Protocol interfaces for instruments session dependency injection."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from uiadriver.instruments.session import ProcessExit
from uiadriver.shared.models import DeviceDescriptor, InstrumentsVersion


@runtime_checkable
class ProcessListener(Protocol):
    """Observer of an external process' output and termination."""

    def on_output(self, line: str) -> None:
        """Called for every line the process writes to stdout/stderr."""
        ...

    def on_exit(self, event: ProcessExit) -> None:
        """Called once when the process terminates."""
        ...


@runtime_checkable
class DevicePreparer(Protocol):
    """Protocol for configuring a simulated device before instruments runs.

    Every step is idempotent and raises ``DevicePreparationError`` on failure.
    """

    async def set_variation(self, device: DeviceDescriptor) -> None: ...

    async def set_sdk_version(self, device: DeviceDescriptor) -> None: ...

    async def reset_content_and_settings(self) -> None: ...

    async def set_l10n(self, locale: str, language: str) -> None: ...

    async def set_keyboard_options(self, device: DeviceDescriptor) -> None: ...

    async def set_location_preference(self, enabled: bool) -> None: ...

    async def set_mobile_safari_options(self, device: DeviceDescriptor) -> None: ...

    async def cleanup_device(self) -> None:
        """Release device-level resources. Safe to call repeatedly."""
        ...


@runtime_checkable
class TargetApplication(Protocol):
    """Application bundle instruments launches on the device."""

    @property
    def bundle_path(self) -> Path: ...

    def set_default_device(self, device: DeviceDescriptor) -> None:
        """Bind the bundle to the device family it should launch on."""
        ...


@runtime_checkable
class ToolResolver(Protocol):
    """Locates the instruments binary and automation template for a tool version."""

    def instruments_path(self, version: InstrumentsVersion) -> Path: ...

    def automation_template(self, version: InstrumentsVersion) -> Path: ...

    def reset(self) -> None:
        """Drop memoised lookups."""
        ...
