from typing import Any, Dict, Optional

EXPOSABLE_BUTTON_TYPES = ('momentary', 'detached')


class DefaultRequestCoder:
    """Relay devices: /relay/<n> control, `relays` list in status and settings."""

    status_path = '/status'
    settings_path = '/settings'
    output_kind = 'relay'
    output_field = 'relays'

    def encode_state_url(self, index: int, state: Dict[str, Any]) -> str:
        return f"/{self.output_kind}/{index}?turn={'on' if state.get('power') else 'off'}"

    def decode_output(self, record: Any) -> Dict[str, Any]:
        if isinstance(record, dict):
            return {'power': record.get('ison') is True}
        # Some firmwares report a bare boolean per relay
        return {'power': record is True}

    def decode_state_response(self, response: Any) -> Dict[str, Any]:
        outputs = response.get(self.output_field) if isinstance(response, dict) else None
        if not isinstance(outputs, list):
            return {'outputs': {}}
        return {'outputs': {index: self.decode_output(record) for index, record in enumerate(outputs)}}

    def decode_configuration_response(self, response: Any) -> Dict[str, set]:
        outputs, inputs = set(), set()
        if not isinstance(response, dict):
            return {'outputs': outputs, 'inputs': inputs}

        if isinstance(response.get('relays'), list):
            for index, relay in enumerate(response['relays']):
                outputs.add(index)
                if self.is_exposable(relay):
                    inputs.add(index)
        elif isinstance(response.get('inputs'), list):
            for index, record in enumerate(response['inputs']):
                if self.is_exposable(record):
                    inputs.add(index)

        return {'outputs': outputs, 'inputs': inputs}

    def decode_set_response(self, index: int, response: Any, state: Dict[str, Any]) -> Dict[str, Any]:
        """A set call answers with the single output record; gaps fall back to the requested state."""
        record = response if isinstance(response, dict) else {}
        power = record['ison'] is True if 'ison' in record else bool(state.get('power'))
        return {'outputs': {index: {'power': power}}}

    def is_exposable(self, record: Any) -> bool:
        return isinstance(record, dict) and record.get('btn_type') in EXPOSABLE_BUTTON_TYPES


class DimmerRequestCoder(DefaultRequestCoder):
    """Dimmers: /light/<n> control with optional brightness, `lights` list."""

    output_kind = 'light'
    output_field = 'lights'

    def encode_state_url(self, index: int, state: Dict[str, Any]) -> str:
        url = super().encode_state_url(index, state)
        brightness = state.get('brightness')
        if isinstance(brightness, int) and not isinstance(brightness, bool):
            url += f"&brightness={brightness}"
        return url

    def decode_output(self, record: Any) -> Dict[str, Any]:
        decoded = super().decode_output(record)
        if isinstance(record, dict) and isinstance(record.get('brightness'), int):
            decoded['brightness'] = record['brightness']
        return decoded

    def decode_configuration_response(self, response: Any) -> Dict[str, set]:
        outputs, inputs = set(), set()
        if not isinstance(response, dict):
            return {'outputs': outputs, 'inputs': inputs}

        for index, _light in enumerate(response.get('lights') or []):
            outputs.add(index)
        for index, record in enumerate(response.get('inputs') or []):
            if self.is_exposable(record):
                inputs.add(index)

        return {'outputs': outputs, 'inputs': inputs}

    def decode_set_response(self, index: int, response: Any, state: Dict[str, Any]) -> Dict[str, Any]:
        decoded = super().decode_set_response(index, response, state)
        record = response if isinstance(response, dict) else {}
        brightness: Optional[int] = record.get('brightness', state.get('brightness'))
        if isinstance(brightness, int) and not isinstance(brightness, bool):
            decoded['outputs'][index]['brightness'] = brightness
        return decoded


def coder_for(device) -> DefaultRequestCoder:
    return DimmerRequestCoder() if device.is_dimmer else DefaultRequestCoder()
