import ipaddress
import re
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Dict, List, Optional
from config import logger

BUTTON_PATTERN = re.compile(r"/button/([0-9]+)/(short|long|double)$")


def normalize_address(address: str) -> str:
    """Canonical text form of an IP, with IPv4-mapped IPv6 unwrapped."""
    try:
        ip = ipaddress.ip_address(address.strip().strip('[]'))
    except ValueError:
        return address.strip().lower()
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return str(ip)


class DeviceSubscriber:
    """Routes one device's notifications to the status cache and the button handler."""

    def __init__(self, device_id: str, status_cache, on_button: Callable[[str, int, str], None]):
        self.device_id = device_id
        self.status_cache = status_cache
        self.on_button = on_button

    def update(self):
        self.status_cache.update_status(self.device_id, forced=True)

    def short_press(self, index: int):
        self.on_button(self.device_id, index, 'short')

    def long_press(self, index: int):
        self.on_button(self.device_id, index, 'long')

    def double_press(self, index: int):
        self.on_button(self.device_id, index, 'double')


class _NotificationHandler(BaseHTTPRequestHandler):
    server: "_NotificationHTTPServer"

    def do_GET(self):
        status = self.server.notification_server.dispatch(self.client_address[0], self.path)
        body = b'OK' if status == 200 else b'Not Found'
        self.send_response(status)
        self.send_header('Content-Type', 'text/plain')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    do_POST = do_GET

    def log_message(self, format, *args):
        logger.debug(f"Notification server: {self.address_string()} - {format % args}")


class _NotificationHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, notification_server):
        self.notification_server = notification_server
        super().__init__(address, _NotificationHandler)


class HttpNotificationServer:
    def __init__(self, port: int = 3599, host: str = '0.0.0.0'):
        self.port = port
        self.host = host
        self.subscriptions: Dict[str, List[DeviceSubscriber]] = {}
        self._server: Optional[_NotificationHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def subscribe(self, address: str, subscriber):
        """Several devices may share one address (outputs of one multi-relay unit)."""
        key = normalize_address(address)
        logger.info(f"Registering notifications from {key}")
        self.subscriptions.setdefault(key, []).append(subscriber)

    def dispatch(self, remote_address: str, path: str) -> int:
        """Handle one notification; returns the HTTP status to answer with."""
        address = normalize_address(remote_address)
        subscribers = self.subscriptions.get(address)
        if not subscribers:
            logger.debug(f"Notification from unknown device {remote_address}")
            return 404

        path = path.split('?', 1)[0].rstrip('/')
        if path.endswith('/status'):
            logger.debug(f"Status update notification received from {address}")
            for subscriber in subscribers:
                subscriber.update()
            return 200

        match = BUTTON_PATTERN.search(path)
        if match:
            index, kind = int(match.group(1)), match.group(2)
            logger.debug(f"Button {index} {kind} press received from {address}")
            for subscriber in subscribers:
                if kind == 'short':
                    subscriber.short_press(index)
                elif kind == 'long':
                    subscriber.long_press(index)
                else:
                    subscriber.double_press(index)
            return 200

        return 404

    def start(self):
        self._server = _NotificationHTTPServer((self.host, self.port), self)
        self.port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info(f"Started status notification server at port {self.port}")

    def stop(self):
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        logger.info("Notification server stopped.")
