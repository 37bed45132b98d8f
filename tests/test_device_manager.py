from __future__ import annotations

import json
from pathlib import Path

import pytest

from device_manager import DeviceConfigError, DeviceManager


def test_parse_assigns_stable_identities() -> None:
    manager = DeviceManager(data_file="unused.json", push_default=False)
    devices = manager.parse([
        {"name": "Hall", "ip": "10.0.0.5"},
        {"name": "Lamp", "ip": " 10.0.0.6 ", "type": "dimmer", "port": "8080", "authentication": "admin:pw"},
    ])

    assert [d.device_id for d in devices] == ["shelly0", "shelly1"]
    assert devices[0].port == 80 and devices[0].output == 0 and not devices[0].is_dimmer
    assert devices[1].ip == "10.0.0.6"
    assert devices[1].port == 8080
    assert devices[1].is_dimmer
    assert devices[1].authentication == "admin:pw"


def test_push_flag_defaults_to_notification_setting() -> None:
    manager = DeviceManager(data_file="unused.json", push_default=True)
    devices = manager.parse({"devices": [{"name": "A", "ip": "10.0.0.5"}, {"name": "B", "ip": "10.0.0.6", "push": False}]})
    assert [d.push for d in devices] == [True, False]


@pytest.mark.parametrize(
    "entry",
    [
        {"name": "No address"},
        {"ip": "10.0.0.5"},
        {"name": "Bad type", "ip": "10.0.0.5", "type": "thermostat"},
        {"name": "Bad port", "ip": "10.0.0.5", "port": "http"},
    ],
)
def test_invalid_entry_rejects_whole_list(entry: dict) -> None:
    manager = DeviceManager(data_file="unused.json")
    with pytest.raises(DeviceConfigError):
        manager.parse([{"name": "Good", "ip": "10.0.0.9"}, entry])


def test_empty_list_is_rejected() -> None:
    with pytest.raises(DeviceConfigError):
        DeviceManager(data_file="unused.json").parse([])


def test_load_from_file(tmp_path: Path) -> None:
    path = tmp_path / "devices.json"
    path.write_text(json.dumps([{"name": "Hall", "ip": "10.0.0.5"}]))
    manager = DeviceManager(data_file=str(path))

    devices = manager.load()

    assert len(devices) == 1
    assert manager.devices == devices
    assert devices[0].name == "Hall"


def test_load_missing_or_broken_file(tmp_path: Path) -> None:
    with pytest.raises(DeviceConfigError):
        DeviceManager(data_file=str(tmp_path / "missing.json")).load()

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    with pytest.raises(DeviceConfigError):
        DeviceManager(data_file=str(broken)).load()
