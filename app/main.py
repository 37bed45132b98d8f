import sys
from config import NOTIFICATION_PORT, logger
from cache_manager import DeviceStatusCache
from device_manager import DeviceConfigError, DeviceManager
from http_client import ShellyHttpTransport
from mqtt_handler import MQTTHandler
from notification_server import DeviceSubscriber, HttpNotificationServer


def build_bridge(devices, notification_port=NOTIFICATION_PORT):
    transports = {device.device_id: ShellyHttpTransport.for_device(device) for device in devices}
    push_devices = [device.device_id for device in devices if device.push and notification_port]
    status_cache = DeviceStatusCache(transports, push_devices=push_devices)
    handler = MQTTHandler(status_cache, devices)

    notification_server = None
    if notification_port:
        notification_server = HttpNotificationServer(notification_port)
        for device in devices:
            notification_server.subscribe(
                device.ip, DeviceSubscriber(device.device_id, status_cache, handler.on_button))

    return status_cache, handler, notification_server


def main():
    logger.info("Starting Shelly to MQTT Bridge...")

    try:
        devices = DeviceManager().load()
    except DeviceConfigError as e:
        logger.critical(f"Invalid device configuration: {e}")
        sys.exit(1)

    status_cache, handler, notification_server = build_bridge(devices)
    try:
        if notification_server:
            notification_server.start()
        status_cache.update_status(forced=True)
        handler.probe_inputs()
        handler.start()
    except KeyboardInterrupt:
        logger.info("Application shutting down.")
    finally:
        handler.stop()
        if notification_server:
            notification_server.stop()
        status_cache.stop()


if __name__ == "__main__":
    main()
