"""Tests for shared domain models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from uiadriver.shared.enums import DeviceType
from uiadriver.shared.models import DeviceDescriptor, InstrumentsVersion, ScriptRequest, ScriptResponse

def test_device_descriptor_defaults_and_frozen() -> None:
    device = DeviceDescriptor()
    assert device.device is DeviceType.IPHONE
    assert device.locale == "en_US"
    with pytest.raises(ValidationError):
        device.locale = "de_DE"  # type: ignore[misc]

def test_instruments_version_is_hashable_and_printable() -> None:
    a = InstrumentsVersion(version="5.1", build="55045")
    b = InstrumentsVersion(version="5.1", build="55045")
    assert {a: "x"}[b] == "x"
    assert str(a) == "5.1 (55045)"
    assert str(InstrumentsVersion(version="6.0")) == "6.0"

def test_script_response_from_json() -> None:
    response = ScriptResponse.model_validate_json('{"id": 3, "status": 7, "value": {"message": "no element"}}')
    assert not response.ok
    assert response.value == {"message": "no element"}
    assert ScriptResponse(id=1).ok

def test_script_request_dump() -> None:
    assert ScriptRequest(id=1, script="x()").model_dump() == {"id": 1, "script": "x()"}
