import itertools
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional
from config import STATUS_CACHE_TTL, STATUS_POLL_INTERVAL, WRITE_FAILURE_DELAY, logger


class NoOutputsError(RuntimeError):
    """Device configuration reported no outputs."""


class _DeviceEntry:
    def __init__(self, push: bool):
        self.lock = threading.Lock()
        self.push = push
        self.state: Optional[Dict[str, Any]] = None
        self.timestamp = 0.0
        self.fetching = False
        self.callbacks: List[Callable] = []
        self.timer = None


class DeviceStatusCache:
    """Per-device status cache that coalesces concurrent status fetches.

    Each device is either idle or fetching. While a fetch is in flight every
    further read for that device is queued, so at most one status request per
    device is outstanding. When the fetch completes the queue is swapped out
    and drained in FIFO order with the same result. Every mutation of a
    device's entry happens under that device's lock; callbacks always run
    outside of it.

    Devices that push their own status notifications are never polled.
    """

    def __init__(self, transports: Dict[str, Any], push_devices: Iterable[str] = (),
                 ttl: float = STATUS_CACHE_TTL, poll_interval: float = STATUS_POLL_INTERVAL,
                 write_failure_delay: float = WRITE_FAILURE_DELAY,
                 executor=None, timer_factory=threading.Timer, clock=time.monotonic):
        self.transports = dict(transports)
        push_devices = set(push_devices)
        self.entries = {device_id: _DeviceEntry(device_id in push_devices) for device_id in self.transports}
        self.ttl = ttl
        self.poll_interval = poll_interval
        self.write_failure_delay = write_failure_delay
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max(4, len(self.transports)), thread_name_prefix='shelly-io')
        self.timer_factory = timer_factory
        self.clock = clock
        self.listeners: List[Callable[[str, Dict[str, Any]], None]] = []
        self._write_timers_lock = threading.Lock()
        self._write_timers: Dict[int, Any] = {}
        self._write_timer_ids = itertools.count()

    def _entry(self, device_id: str) -> _DeviceEntry:
        try:
            return self.entries[device_id]
        except KeyError:
            raise KeyError(f"Unknown device: {device_id}") from None

    def add_listener(self, listener: Callable[[str, Dict[str, Any]], None]):
        self.listeners.append(listener)

    def get_cached(self, device_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entry(device_id)
        with entry.lock:
            return entry.state

    # Reads

    def read(self, device_id: str, forced: bool, callback: Callable):
        """Answer `callback(error, state)` from the cache or from one shared fetch."""
        entry = self._entry(device_id)
        with entry.lock:
            if not forced and entry.state is not None and self.clock() - entry.timestamp < self.ttl:
                cached = entry.state
            elif entry.fetching:
                logger.debug(f"Pushing status callback to queue of {device_id} - updating")
                entry.callbacks.append(callback)
                return
            else:
                cached = None
                entry.fetching = True
                self._cancel_timer(entry)
                entry.callbacks.append(callback)

        if cached is not None:
            logger.debug(f"Returning cached status of {device_id}")
            self._invoke(callback, None, cached)
            return

        try:
            self.executor.submit(self._fetch, device_id)
        except RuntimeError as e:
            # Executor already shut down; nobody will drain the queue
            logger.error(f"Cannot fetch status of {device_id}: {e}")
            with entry.lock:
                callbacks, entry.callbacks = entry.callbacks, []
                entry.fetching = False
            for queued in callbacks:
                self._invoke(queued, e, None)

    def _fetch(self, device_id: str):
        entry = self.entries[device_id]
        state, error = None, None
        try:
            state = self.transports[device_id].get_state()
        except Exception as e:
            logger.error(f"Error fetching status of {device_id}: {e}")
            error = e

        with entry.lock:
            if error is None:
                entry.state = state
                entry.timestamp = self.clock()
            callbacks, entry.callbacks = entry.callbacks, []
            entry.fetching = False
            self._schedule_refresh(device_id, entry)

        logger.debug(f"Calling {len(callbacks)} queued callbacks for {device_id}")
        for callback in callbacks:
            self._invoke(callback, error, state)

    def update_status(self, device_id: Optional[str] = None, forced: bool = False):
        """Refresh one device (or all) and push successful results to listeners."""
        identifiers = [device_id] if device_id else list(self.entries)
        for identifier in identifiers:
            logger.debug(f"Updating status of {identifier}")
            self.read(identifier, forced, partial(self._notify_listeners, identifier))

    def _notify_listeners(self, device_id: str, error: Optional[Exception], state=None):
        if error is not None:
            return
        for listener in list(self.listeners):
            self._invoke(listener, device_id, state)

    # Writes

    def write(self, device_id: str, output_index: int, state: Dict[str, Any], callback: Callable):
        """Set an output; `callback(error)` once the device answered."""
        self._entry(device_id)
        self.executor.submit(self._write, device_id, output_index, dict(state), callback)

    def _write(self, device_id: str, output_index: int, state: Dict[str, Any], callback: Callable):
        entry = self.entries[device_id]
        transport = self.transports[device_id]
        logger.debug(f"Setting output {output_index} of {device_id} to {state}")
        try:
            raw = transport.set_state(output_index, state)
            decoded = transport.decode_set_response(output_index, state, raw)
        except Exception as e:
            logger.error(f"Failed to change status of {device_id}: {e}")
            timer_id = next(self._write_timer_ids)
            timer = self.timer_factory(self.write_failure_delay, self._report_write_failure,
                                       args=(device_id, callback, e, timer_id))
            timer.daemon = True
            with self._write_timers_lock:
                self._write_timers[timer_id] = timer
            timer.start()
            return

        with entry.lock:
            previous = entry.state or {}
            outputs = dict(previous.get('outputs', {}))
            outputs.update(decoded['outputs'])
            entry.state = {**previous, 'outputs': outputs}
            entry.timestamp = self.clock()

        self._invoke(callback, None)
        self.update_status(device_id, forced=False)

    def _report_write_failure(self, device_id: str, callback: Callable, error: Exception, timer_id: int):
        with self._write_timers_lock:
            self._write_timers.pop(timer_id, None)
        self._invoke(callback, error)
        self.update_status(device_id, forced=True)

    # Configuration

    def probe_configuration(self, device_id: str, callback: Callable):
        """`callback(error, {'outputs', 'inputs'})`; no outputs counts as a failure."""
        self._entry(device_id)
        self.executor.submit(self._probe, device_id, callback)

    def _probe(self, device_id: str, callback: Callable):
        config, error = None, None
        try:
            config = self.transports[device_id].get_configuration()
            if not config.get('outputs'):
                raise NoOutputsError(f"{device_id} reported no outputs")
        except Exception as e:
            logger.error(f"Error reading configuration of {device_id}: {e}")
            config, error = None, e
        self._invoke(callback, error, config)

    def can_expose_button(self, device_id: str, input_index: int, callback: Callable):
        def _answer(error, config):
            if error is not None:
                callback(error, None)
            else:
                callback(None, input_index in config['inputs'])
        self.probe_configuration(device_id, _answer)

    # Timers

    def _cancel_timer(self, entry: _DeviceEntry):
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None

    def _schedule_refresh(self, device_id: str, entry: _DeviceEntry):
        # Pushed devices tell us when to refresh
        if entry.push:
            return
        self._cancel_timer(entry)
        entry.timer = self.timer_factory(self.poll_interval, self.update_status, args=(device_id, True))
        entry.timer.daemon = True
        entry.timer.start()

    def stop(self):
        for entry in self.entries.values():
            with entry.lock:
                self._cancel_timer(entry)
        with self._write_timers_lock:
            pending, self._write_timers = list(self._write_timers.values()), {}
        for timer in pending:
            timer.cancel()
        self.executor.shutdown(wait=False)

    def _invoke(self, callback: Callable, *args):
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Status callback failed: {e}", exc_info=True)
