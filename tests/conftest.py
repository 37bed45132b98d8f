from __future__ import annotations

from typing import Any, Callable

import pytest

from cache_manager import DeviceStatusCache
from http_client import ShellyHttpTransport
from request_coder import DefaultRequestCoder


class ManualExecutor:
    """Runs submitted work only when the test says so."""

    def __init__(self) -> None:
        self.tasks: list[tuple[Callable, tuple, dict]] = []

    def submit(self, fn: Callable, *args: Any, **kwargs: Any) -> None:
        self.tasks.append((fn, args, kwargs))

    def run_all(self) -> None:
        while self.tasks:
            fn, args, kwargs = self.tasks.pop(0)
            fn(*args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self.tasks.clear()


class FakeTimer:
    def __init__(self, interval: float, function: Callable, args: tuple = (), kwargs: dict | None = None) -> None:
        self.interval = interval
        self.function = function
        self.args = args
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function(*self.args, **self.kwargs)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport(ShellyHttpTransport):
    """Real coders and JSON handling, canned device answers keyed by path without query."""

    def __init__(self, coder: DefaultRequestCoder | None = None, responses: dict | None = None) -> None:
        super().__init__(coder or DefaultRequestCoder(), "10.0.0.5")
        self.responses: dict[str, Any] = responses or {}
        self.requests: list[str] = []

    def send_request(self, path: str, method: str = "GET", data: Any = None) -> str:
        self.requests.append(path)
        response = self.responses[path.split("?", 1)[0]]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def executor() -> ManualExecutor:
    return ManualExecutor()


@pytest.fixture
def timers() -> list[FakeTimer]:
    return []


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_cache(executor: ManualExecutor, timers: list[FakeTimer], clock: FakeClock) -> Callable[..., DeviceStatusCache]:
    def timer_factory(interval: float, function: Callable, args: tuple = (), kwargs: dict | None = None) -> FakeTimer:
        timer = FakeTimer(interval, function, args, kwargs)
        timers.append(timer)
        return timer

    def _make(transports: dict[str, Any], push_devices: tuple[str, ...] = ()) -> DeviceStatusCache:
        return DeviceStatusCache(
            transports,
            push_devices=push_devices,
            ttl=30,
            poll_interval=30,
            write_failure_delay=3,
            executor=executor,
            timer_factory=timer_factory,
            clock=clock,
        )

    return _make
