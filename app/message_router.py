import json
from typing import Any, Dict, List, Optional
from config import MQTT_TOPIC, logger


def _topic_parts(topic: str, root: str) -> Optional[List[str]]:
    """Topic levels below the root (which may itself span several levels)."""
    prefix = root.rstrip('/') + '/'
    if not topic.startswith(prefix): return None
    return topic[len(prefix):].split('/')


def _get_topic_type(parts: Optional[List[str]]) -> str:
    """Determines the type of message from the topic levels below the root."""
    if parts is None: return "not_bridge_topic"
    if len(parts) == 3 and parts[2] == 'set' and parts[1].isdigit(): return "output_set"
    if len(parts) == 3 and parts[2] == 'get' and parts[1].isdigit(): return "output_get"
    if len(parts) == 2 and parts[1] == 'set': return "device_set"
    if len(parts) == 2 and parts[1] == 'get': return "device_get"
    return "unknown"


def parse_state_payload(payload: str) -> Optional[Dict[str, Any]]:
    """ON/OFF text or JSON {"state": "ON", "brightness": 80} -> desired output state."""
    text = payload.strip()
    if text.upper() in ('ON', 'OFF'):
        return {'power': text.upper() == 'ON'}

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.warning(f"Unparseable set payload: '{payload}'")
        return None

    if isinstance(data, bool):
        return {'power': data}
    if not isinstance(data, dict):
        return None

    state: Dict[str, Any] = {}
    raw_state = data.get('state')
    if isinstance(raw_state, str):
        state['power'] = raw_state.upper() == 'ON'
    elif isinstance(raw_state, bool):
        state['power'] = raw_state

    brightness = data.get('brightness')
    if brightness is not None:
        try:
            state['brightness'] = max(0, min(100, int(brightness)))
        except (TypeError, ValueError):
            logger.warning(f"Invalid brightness in set payload: {brightness}")
            return None
        # Brightness alone means "on at this level"
        state.setdefault('power', True)

    return state or None


def route_message(topic: str, payload: str, root: str = MQTT_TOPIC) -> Optional[Dict[str, Any]]:
    """Main topic routing: returns a bridge command or None."""
    parts = _topic_parts(topic, root)
    topic_type = _get_topic_type(parts)
    logger.debug(f"Topic: {topic}, Detected type: {topic_type}")

    if topic_type in ("output_set", "device_set"):
        state = parse_state_payload(payload)
        if state is None: return None
        output = int(parts[1]) if topic_type == "output_set" else None
        return {'action': 'set', 'device_id': parts[0], 'output': output, 'state': state}

    if topic_type == "output_get":
        return {'action': 'get', 'device_id': parts[0], 'output': int(parts[1])}

    if topic_type == "device_get":
        return {'action': 'get', 'device_id': parts[0], 'output': None}

    return None
