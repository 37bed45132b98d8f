from __future__ import annotations

import main
from device_manager import Device
from main import build_bridge


def test_build_bridge_without_notifications() -> None:
    devices = [Device("shelly0", "Hall", "10.0.0.5", push=True)]
    cache, handler, server = build_bridge(devices, notification_port=None)
    try:
        assert server is None
        # No listener -> the device has to be polled
        assert cache.entries["shelly0"].push is False
        assert handler.devices == {"shelly0": devices[0]}
    finally:
        cache.stop()


def test_build_bridge_with_notifications() -> None:
    devices = [
        Device("shelly0", "Hall", "10.0.0.5", push=True),
        Device("shelly1", "Lamp", "10.0.0.6", device_type="dimmer", push=False),
    ]
    cache, handler, server = build_bridge(devices, notification_port=3599)
    try:
        assert set(server.subscriptions) == {"10.0.0.5", "10.0.0.6"}
        assert cache.entries["shelly0"].push is True
        assert cache.entries["shelly1"].push is False
        assert cache.transports["shelly1"].request_coder.output_kind == "light"
        assert server.subscriptions["10.0.0.6"][0].on_button == handler.on_button
    finally:
        cache.stop()


def test_outputs_sharing_an_address_are_all_subscribed() -> None:
    devices = [
        Device("shelly0", "Left", "10.0.0.5", output=0, push=True),
        Device("shelly1", "Right", "10.0.0.5", output=1, push=True),
    ]
    cache, handler, server = build_bridge(devices, notification_port=3599)
    try:
        assert [s.device_id for s in server.subscriptions["10.0.0.5"]] == ["shelly0", "shelly1"]
    finally:
        cache.stop()


class _Stoppable:
    def __init__(self, calls: list, name: str) -> None:
        self.calls = calls
        self.name = name

    def __getattr__(self, attr: str):
        return lambda *args, **kwargs: self.calls.append((self.name, attr))


def test_main_stops_every_component(monkeypatch) -> None:
    calls: list = []
    monkeypatch.setattr(main.DeviceManager, "load", lambda self: [Device("shelly0", "Hall", "10.0.0.5")])
    monkeypatch.setattr(main, "build_bridge", lambda devices: (
        _Stoppable(calls, "cache"), _Stoppable(calls, "mqtt"), _Stoppable(calls, "notifications")))

    main.main()

    assert ("mqtt", "start") in calls
    assert [call for call in calls if call[1] == "stop"] == [
        ("mqtt", "stop"), ("notifications", "stop"), ("cache", "stop")]
