"""
Load generation against the testing host.

A fixed pool of worker threads listens on a broadcast command channel. Once
started, each worker keeps sending a random request picked from the key file
until it is told to stop, recording how many requests it sent, how many
failed and how long each took.
"""

import logging
import statistics
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .das_api_client import DasApiClient
from .errors import FetchKeysError, IntegrityVerificationError
from .keys_fetcher import FileKeysFetcher
from .request_params import build_request

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.1


class CommandKind(Enum):
    INIT = "init"
    START = "start"
    STOP = "stop"


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    worker_ids: Tuple[int, ...] = ()

    def addresses(self, worker_id: int) -> bool:
        return worker_id in self.worker_ids


class CommandChannel:
    """
    Single-value broadcast channel.

    Every receiver sees the latest command once; older commands that were
    never observed are overwritten.
    """

    def __init__(self, initial: Command):
        self._condition = threading.Condition()
        self._command = initial
        self._version = 0

    def send(self, command: Command):
        with self._condition:
            self._command = command
            self._version += 1
            self._condition.notify_all()

    def wait_for_change(self, seen_version: int, timeout: float) -> Tuple[int, Optional[Command]]:
        """Return (version, command) if a newer command arrives within timeout."""
        with self._condition:
            if self._version == seen_version:
                self._condition.wait(timeout)
            if self._version == seen_version:
                return seen_version, None
            return self._version, self._command


@dataclass
class Stats:
    requests_sent: int = 0
    errors_num: int = 0
    response_time_millis: List[float] = field(default_factory=list)

    def merge(self, other: 'Stats'):
        self.requests_sent += other.requests_sent
        self.errors_num += other.errors_num
        self.response_time_millis.extend(other.response_time_millis)

    def summary(self) -> Dict[str, float]:
        times = sorted(self.response_time_millis)
        summary = {
            'requests_sent': self.requests_sent,
            'errors_num': self.errors_num,
            'mean_ms': 0.0,
            'median_ms': 0.0,
            'p95_ms': 0.0,
        }
        if times:
            summary['mean_ms'] = statistics.mean(times)
            summary['median_ms'] = statistics.median(times)
            summary['p95_ms'] = times[min(len(times) - 1, int(len(times) * 0.95))]
        return summary


class Worker:
    """One virtual user."""

    def __init__(
        self,
        worker_id: int,
        channel: CommandChannel,
        api: DasApiClient,
        api_endpoint: str,
        keys_fetcher: FileKeysFetcher
    ):
        self.id = worker_id
        self.channel = channel
        self.api = api
        self.api_endpoint = api_endpoint
        self.keys_fetcher = keys_fetcher
        self.active = False
        self.stats = Stats()

    def run(self):
        version = -1
        while True:
            # Block while idle, only poll while sending
            timeout = 0 if self.active else POLL_INTERVAL_SECONDS
            version, command = self.channel.wait_for_change(version, timeout)
            if command is not None:
                if command.kind is CommandKind.INIT:
                    logger.info(f"Worker #{self.id} is initialised and ready to start")
                elif command.kind is CommandKind.START and command.addresses(self.id):
                    logger.info(f"Worker #{self.id} is starting its job")
                    self.active = True
                elif command.kind is CommandKind.STOP and command.addresses(self.id):
                    logger.info(f"Worker #{self.id} stopped after {self.stats.requests_sent} requests")
                    return

            if self.active:
                self.send_random_request()

    def send_random_request(self):
        try:
            category, key = self.keys_fetcher.get_random_command()
            body = build_request(category, key)
        except (FetchKeysError, ValueError) as e:
            logger.error(f"Worker #{self.id} cannot build a request: {e}")
            self.stats.errors_num += 1
            self.active = False
            return

        started = time.perf_counter()
        try:
            self.api.make_request(self.api_endpoint, body)
        except IntegrityVerificationError as e:
            logger.debug(f"Worker #{self.id} {category} request failed: {e}")
            self.stats.errors_num += 1
        self.stats.requests_sent += 1
        self.stats.response_time_millis.append((time.perf_counter() - started) * 1000.0)


def run_performance_tests(
    num_of_threads: int,
    test_duration: float,
    keys_fetcher: FileKeysFetcher,
    api_endpoint: str,
    api: Optional[DasApiClient] = None,
    stop_event: Optional[threading.Event] = None
) -> Stats:
    """
    Drive num_of_threads workers against api_endpoint for test_duration seconds.

    Returns:
        Aggregate statistics of all workers
    """
    api = api or DasApiClient()
    stop_event = stop_event or threading.Event()
    channel = CommandChannel(Command(CommandKind.INIT))

    workers = [Worker(i, channel, api, api_endpoint, keys_fetcher) for i in range(num_of_threads)]
    threads = [
        threading.Thread(target=_run_worker, args=(w,), name=f"das-worker-{w.id}", daemon=True)
        for w in workers
    ]
    for thread in threads:
        thread.start()

    ids = tuple(w.id for w in workers)
    channel.send(Command(CommandKind.START, ids))
    stop_event.wait(test_duration)
    channel.send(Command(CommandKind.STOP, ids))

    for thread in threads:
        thread.join()

    total = Stats()
    for worker in workers:
        total.merge(worker.stats)
        _log_summary(f"Worker #{worker.id}", worker.stats)
    _log_summary("TOTAL", total)
    return total


def _run_worker(worker: Worker):
    try:
        worker.run()
    except Exception:
        logger.exception(f"Worker #{worker.id} crashed")


def _log_summary(label: str, stats: Stats):
    s = stats.summary()
    logger.info(
        f"{label}: requests {s['requests_sent']}, errors {s['errors_num']}, "
        f"mean {s['mean_ms']:.1f} ms, median {s['median_ms']:.1f} ms, p95 {s['p95_ms']:.1f} ms"
    )
