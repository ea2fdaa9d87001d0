"""Domain enumerations used across all modules."""

from __future__ import annotations

from enum import Enum, unique


@unique
class SessionState(str, Enum):
    """Lifecycle states for an instruments session."""

    CREATED = "created"
    PREPARING = "preparing"
    LAUNCHING = "launching"
    HANDSHAKING = "handshaking"
    READY = "ready"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


@unique
class ChannelState(str, Enum):
    """Readiness of the command channel."""

    NOT_READY = "not_ready"
    READY = "ready"
    STOPPED = "stopped"


@unique
class DeviceType(str, Enum):
    """Simulated device families."""

    IPHONE = "iphone"
    IPAD = "ipad"

    @property
    def family(self) -> int:
        """``UIDeviceFamily`` value used in the application's Info.plist."""
        return 1 if self is DeviceType.IPHONE else 2


@unique
class DeviceVariation(str, Enum):
    """Size/variant of a simulated device."""

    REGULAR = "regular"
    RETINA = "retina"
    RETINA_4INCH = "retina_4inch"
    RETINA_4INCH_64BIT = "retina_4inch_64bit"
