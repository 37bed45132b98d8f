import os
import logging
import sys

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
logging.basicConfig(
    stream=sys.stdout,
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("shelly2mqtt")

MQTT_BROKER = os.getenv('MQTT_BROKER', 'localhost')
MQTT_PORT = int(os.getenv('MQTT_PORT', 1883))
MQTT_USERNAME = os.getenv('MQTT_USER', None)
MQTT_PASSWORD = os.getenv('MQTT_PASSWORD', None)
MQTT_TOPIC = os.getenv('MQTT_TOPIC', 'shelly')

DEVICES_FILE = os.getenv('DEVICES_FILE', 'devices.json')

# Unset -> no push listener, devices are polled
_notification_port = os.getenv('NOTIFICATION_PORT')
NOTIFICATION_PORT = int(_notification_port) if _notification_port else None

HTTP_TIMEOUT = float(os.getenv('HTTP_TIMEOUT', 2.0))

STATUS_CACHE_TTL = float(os.getenv('STATUS_CACHE_TTL', 30))
STATUS_POLL_INTERVAL = float(os.getenv('STATUS_POLL_INTERVAL', 30))
WRITE_FAILURE_DELAY = float(os.getenv('WRITE_FAILURE_DELAY', 3))
