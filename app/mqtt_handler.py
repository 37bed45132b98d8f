import json
from functools import partial
from typing import Any, Dict, Iterable, Optional
import paho.mqtt.client as mqtt
from config import MQTT_BROKER, MQTT_PORT, MQTT_USERNAME, MQTT_PASSWORD, MQTT_TOPIC, logger
from message_router import route_message


class MQTTHandler:
    """Host side of the bridge: state out to MQTT, get/set requests in."""

    def __init__(self, status_cache, devices: Iterable, broker: str = MQTT_BROKER, port: int = MQTT_PORT,
                 username: Optional[str] = MQTT_USERNAME, password: Optional[str] = MQTT_PASSWORD,
                 root: str = MQTT_TOPIC, client=None):
        self.status_cache = status_cache
        self.devices = {device.device_id: device for device in devices}
        self.broker = broker
        self.port = port
        self.root = root
        self.exposed_inputs: Dict[str, set] = {}

        self.client = client or mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id="shelly2mqtt")
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message

        self.status_cache.add_listener(self.publish_state)

    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            logger.info(f"Successfully connected to MQTT: {self.broker}:{self.port}")
            client.subscribe([(f"{self.root}/+/set", 0), (f"{self.root}/+/get", 0),
                              (f"{self.root}/+/+/set", 0), (f"{self.root}/+/+/get", 0)])
        else:
            logger.error(f"Failed to connect, return code {reason_code}")

    def on_message(self, client, userdata, msg):
        try:
            payload_str = msg.payload.decode('utf-8')
        except UnicodeDecodeError:
            logger.warning(f"Non UTF-8 payload on topic {msg.topic}")
            return

        try:
            command = route_message(msg.topic, payload_str, self.root)
            if not command:
                return

            device = self.devices.get(command['device_id'])
            if device is None:
                logger.warning(f"Message for unknown device: {msg.topic}")
                return

            output = command['output']
            if command['action'] == 'set':
                if output is None:
                    output = device.output
                self.status_cache.write(device.device_id, output, command['state'],
                                        partial(self._on_write_done, device.device_id, output))
            else:
                self.status_cache.read(device.device_id, False,
                                       partial(self._on_read_done, device.device_id, output))
        except Exception as e:
            logger.error(f"Error processing message from topic {msg.topic}: {e}", exc_info=True)

    def _on_write_done(self, device_id: str, output: int, error: Optional[Exception] = None):
        if error is not None:
            self.publish_error(device_id, output, error)

    def _on_read_done(self, device_id: str, output: Optional[int], error: Optional[Exception], state=None):
        if error is not None:
            self.publish_error(device_id, output, error)
            return
        if output is not None:
            outputs = state.get('outputs', {})
            state = {'outputs': {output: outputs[output]} if output in outputs else {}}
        self.publish_state(device_id, state)

    def publish_state(self, device_id: str, state: Dict[str, Any]):
        for index, output in state.get('outputs', {}).items():
            payload: Dict[str, Any] = {'state': 'ON' if output.get('power') else 'OFF'}
            if 'brightness' in output:
                payload['brightness'] = output['brightness']
            logger.debug(f"Reported current state for {device_id}/{index}: {payload}")
            self.client.publish(f"{self.root}/{device_id}/{index}", json.dumps(payload), retain=True)

    def publish_error(self, device_id: str, output: Optional[int], error: Exception):
        suffix = f"{output}/error" if output is not None else "error"
        self.client.publish(f"{self.root}/{device_id}/{suffix}", str(error))

    def on_button(self, device_id: str, index: int, kind: str):
        exposed = self.exposed_inputs.get(device_id)
        if exposed is not None and index not in exposed:
            logger.debug(f"Ignoring {kind} press on non-exposed input {device_id}/{index}")
            return
        self.client.publish(f"{self.root}/{device_id}/input/{index}", kind)

    def probe_inputs(self):
        for device_id in self.devices:
            self.status_cache.probe_configuration(device_id, partial(self._on_configuration, device_id))

    def _on_configuration(self, device_id: str, error: Optional[Exception], config=None):
        if error is not None:
            logger.warning(f"Could not read configuration of {device_id}: {error}")
            return
        self.exposed_inputs[device_id] = set(config['inputs'])
        payload = {'outputs': sorted(config['outputs']), 'inputs': sorted(config['inputs'])}
        self.client.publish(f"{self.root}/{device_id}/config", json.dumps(payload), retain=True)

    def start(self):
        try:
            logger.info(f"Connecting to broker at {self.broker}:{self.port}")
            self.client.connect(self.broker, self.port, 60)
            self.client.loop_forever()
        except Exception as e:
            logger.critical(f"MQTT client failed to start: {e}", exc_info=True)

    def stop(self):
        self.client.disconnect()
