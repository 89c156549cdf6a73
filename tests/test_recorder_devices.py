import pytest

from realtalk.errors import DeviceError
from realtalk.recorder import select_preferred_device


def test_select_preferred_device_prefers_name():
    candidates = [
        {"name": "Built-in Mic", "index": 1},
        {"name": "USB Headset Microphone", "index": 2},
    ]
    result = select_preferred_device(candidates, prefer_name="headset")
    assert result["name"] == "USB Headset Microphone"


def test_select_preferred_device_falls_back_to_first():
    candidates = [
        {"name": "Built-in Mic", "index": 1},
        {"name": "USB Headset Microphone", "index": 2},
    ]
    assert select_preferred_device(candidates, prefer_name="webcam")["index"] == 1
    assert select_preferred_device(candidates)["index"] == 1


def test_select_preferred_device_without_inputs():
    with pytest.raises(DeviceError):
        select_preferred_device([])
