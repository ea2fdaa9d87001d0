"""Centralised configuration via Pydantic Settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from uiadriver.shared.enums import DeviceType, DeviceVariation
from uiadriver.shared.models import DeviceDescriptor, InstrumentsVersion


class Settings(BaseSettings):
    """Driver-wide configuration loaded from environment variables."""

    model_config = {"env_prefix": "UIADRIVER_", "frozen": True}

    # Instruments tool
    instruments_version: str = "5.1"
    instruments_build: str = ""
    # Leave blank to resolve through xcrun / xcode-select.
    instruments_bin: str = ""
    automation_template: str = ""
    xcrun_bin: str = "xcrun"
    xcode_select_bin: str = "xcode-select"

    # Command channel
    channel_host: str = "127.0.0.1"
    # 0 lets the OS assign a free port per session.
    channel_port: int = 0
    channel_poll_timeout_seconds: float = 10.0

    # Timeouts
    handshake_timeout_seconds: float = 30.0
    command_timeout_seconds: float = 60.0
    warmup_timeout_seconds: float = 120.0
    stop_grace_seconds: float = 5.0
    simctl_timeout_seconds: int = 60

    # Target device
    device_uuid: str = ""
    device: DeviceType = DeviceType.IPHONE
    device_variation: DeviceVariation = DeviceVariation.REGULAR
    sdk_version: str = ""
    locale: str = "en_US"
    language: str = "en"

    # Filesystem
    tmp_root: str = ""

    # Extra "-e NAME VALUE" parameters, comma separated.
    # Format: "NAME=VALUE,NAME2=VALUE2"
    extra_environment: str = ""

    @property
    def version(self) -> InstrumentsVersion:
        return InstrumentsVersion(version=self.instruments_version, build=self.instruments_build)

    @property
    def device_descriptor(self) -> DeviceDescriptor:
        return DeviceDescriptor(
            device=self.device,
            variation=self.device_variation,
            sdk_version=self.sdk_version or None,
            locale=self.locale,
            language=self.language,
        )

    @property
    def environment_params(self) -> list[str]:
        """Expand ``extra_environment`` into an ordered ``-e NAME VALUE`` argument list."""
        params: list[str] = []
        for token in self.extra_environment.split(","):
            stripped = token.strip()
            if not stripped or "=" not in stripped:
                continue
            name, value = stripped.split("=", 1)
            params.extend(["-e", name.strip(), value.strip()])
        return params


def get_settings() -> Settings:
    """Build settings from the environment; tests construct Settings directly."""
    return Settings()
