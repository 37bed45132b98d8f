import base64
import json
import requests
from typing import Any, Dict, Optional
from config import HTTP_TIMEOUT, logger
from request_coder import DefaultRequestCoder, coder_for


class JsonParseError(ValueError):
    def __init__(self, message: str, unparsed_response: str):
        super().__init__(message)
        self.unparsed_response = unparsed_response


class RequestTimeoutError(TimeoutError):
    pass


class ShellyHttpTransport:
    def __init__(self, request_coder: DefaultRequestCoder, hostname: str, port: int = 80,
                 timeout: float = HTTP_TIMEOUT, authentication: Optional[str] = None):
        self.request_coder = request_coder
        self.hostname = hostname
        self.port = port
        self.timeout = timeout
        self.authentication = authentication

    @classmethod
    def for_device(cls, device, timeout: float = HTTP_TIMEOUT) -> "ShellyHttpTransport":
        return cls(coder_for(device), device.ip, device.port, timeout, device.authentication)

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.authentication:
            credentials = base64.b64encode(self.authentication.encode('utf-8')).decode('ascii')
            headers['Authorization'] = f"Basic {credentials}"
        return headers

    def send_request(self, path: str, method: str = 'GET', data: Any = None) -> str:
        url = f"http://{self.hostname}:{self.port}{path}"
        body = self.json_encoder(data) if data is not None else None
        logger.debug(f"{method} {url}")
        try:
            response = requests.request(method, url, data=body, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as e:
            raise RequestTimeoutError(f"Request to {url} timed out after {self.timeout}s") from e

        response.raise_for_status()
        logger.debug(f"Raw response from {self.hostname}: {response.text}")
        return response.text

    def json_encoder(self, data: Any) -> str:
        return json.dumps(data)

    def json_decoder(self, data: str) -> Any:
        try:
            return json.loads(data)
        except json.JSONDecodeError as e:
            raise JsonParseError(str(e), data) from e

    def set_state(self, index: int, state: Dict[str, Any]) -> str:
        return self.send_request(self.request_coder.encode_state_url(index, state))

    def get_state(self) -> Dict[str, Any]:
        response = self.send_request(self.request_coder.status_path)
        return self.request_coder.decode_state_response(self.json_decoder(response))

    def get_configuration(self) -> Dict[str, set]:
        response = self.send_request(self.request_coder.settings_path)
        return self.request_coder.decode_configuration_response(self.json_decoder(response))

    def decode_set_response(self, index: int, state: Dict[str, Any], raw: str) -> Dict[str, Any]:
        return self.request_coder.decode_set_response(index, self.json_decoder(raw), state)
