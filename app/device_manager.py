import json
import os
from dataclasses import dataclass
from typing import List, Optional
from config import DEVICES_FILE, NOTIFICATION_PORT, logger

DEVICE_TYPES = ('switch', 'dimmer')


class DeviceConfigError(ValueError):
    """Raised when the device list cannot be loaded or is invalid."""


@dataclass(frozen=True)
class Device:
    device_id: str
    name: str
    ip: str
    port: int = 80
    device_type: str = 'switch'
    authentication: Optional[str] = None
    output: int = 0
    push: bool = False

    @property
    def is_dimmer(self) -> bool:
        return self.device_type == 'dimmer'


class DeviceManager:
    def __init__(self, data_file: str = DEVICES_FILE, push_default: bool = NOTIFICATION_PORT is not None):
        self.data_file = data_file
        self.push_default = push_default
        self.devices: List[Device] = []

    def load(self) -> List[Device]:
        if not os.path.exists(self.data_file):
            raise DeviceConfigError(f"Device list not found: {self.data_file}")
        try:
            with open(self.data_file, 'r') as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise DeviceConfigError(f"Invalid JSON in {self.data_file}: {e}") from e

        self.devices = self.parse(raw)
        logger.info(f"Loaded {len(self.devices)} device(s) from {self.data_file}")
        return self.devices

    def parse(self, raw) -> List[Device]:
        """Validate the raw device list. Any bad entry rejects the whole list."""
        if isinstance(raw, dict):
            raw = raw.get('devices')
        if not isinstance(raw, list) or not raw:
            raise DeviceConfigError("Device list must be a non-empty list")

        devices = []
        for i, entry in enumerate(raw):
            if not isinstance(entry, dict):
                raise DeviceConfigError(f"Device #{i} is not an object")
            if not entry.get('ip'):
                raise DeviceConfigError(f"Device #{i}: you must provide an ip address of the switch")
            if not entry.get('name'):
                raise DeviceConfigError(f"Device #{i}: you must provide a name")

            device_type = entry.get('type', 'switch')
            if device_type not in DEVICE_TYPES:
                raise DeviceConfigError(f"Device #{i}: unsupported type '{device_type}'")

            try:
                port = int(entry.get('port', 80))
                output = int(entry.get('output', 0))
            except (TypeError, ValueError) as e:
                raise DeviceConfigError(f"Device #{i}: {e}") from e

            devices.append(Device(
                device_id=f"shelly{i}",
                name=str(entry['name']),
                ip=str(entry['ip']).strip(),
                port=port,
                device_type=device_type,
                authentication=entry.get('authentication'),
                output=output,
                push=bool(entry.get('push', self.push_default)),
            ))
        return devices
