"""Frozen Pydantic domain models shared by all modules."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from uiadriver.shared.enums import DeviceType, DeviceVariation


class InstrumentsVersion(BaseModel):
    """Version of the instruments tool the session should run with."""

    model_config = {"frozen": True}

    version: str
    build: str = ""

    def __str__(self) -> str:
        return f"{self.version} ({self.build})" if self.build else self.version


class DeviceDescriptor(BaseModel):
    """Target device configuration consumed once by the device preparer."""

    model_config = {"frozen": True}

    device: DeviceType = DeviceType.IPHONE
    variation: DeviceVariation = DeviceVariation.REGULAR
    sdk_version: str | None = None
    locale: str = "en_US"
    language: str = "en"
    keyboard_autocorrection: bool = False
    keyboard_autocapitalization: bool = False
    location_enabled: bool = True
    safari_fraud_warnings: bool = False
    safari_open_links_in_background: bool = True


class ScriptRequest(BaseModel):
    """A single automation script command sent to the running tool."""

    model_config = {"frozen": True}

    id: int
    script: str


class ScriptResponse(BaseModel):
    """Result reported by the automation script for one request."""

    model_config = {"frozen": True}

    id: int
    status: int = 0
    value: Any = None

    @property
    def ok(self) -> bool:
        return self.status == 0

