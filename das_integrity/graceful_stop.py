"""
Run orchestration: one thread per method category, a shared stop signal and
a join that survives failures in individual categories.
"""

import logging
import signal
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Tuple

from .errors import FetchKeysError

logger = logging.getLogger(__name__)


def listen_shutdown(stop_event: threading.Event):
    """
    Install a SIGINT handler that requests a cooperative stop.

    The first signal sets stop_event; in-flight requests finish on their own
    and each category stops at its next request boundary. A second signal
    exits immediately.
    """
    def _signal_handler(signum, frame):
        sig_name = signal.Signals(signum).name
        if stop_event.is_set():
            logger.error(f"Forced exit (received {sig_name} again)")
            sys.exit(1)
        logger.info(f"Shutdown requested ({sig_name}), finishing current requests...")
        stop_event.set()

    try:
        signal.signal(signal.SIGINT, _signal_handler)
    except ValueError as e:
        # signal handlers can only be installed from the main thread
        logger.error(f"Unable to listen for shutdown signal: {e}")


def _run_category(label: str, check: Callable[[], None], stop_event: threading.Event):
    if stop_event.is_set():
        return
    try:
        check()
    except FetchKeysError as e:
        logger.error(f"Fetch keys: {e}")


def graceful_stop(futures: Dict[Future, str]):
    """Wait for every category task, logging the ones that failed."""
    for future in as_completed(futures):
        label = futures[future]
        try:
            future.result()
        except Exception:
            logger.exception(f"Task error in {label} tests")


def run_tests(checks: List[Tuple[str, Callable[[], None]]], stop_event: threading.Event):
    """
    Run all category checks concurrently and wait for them.

    Args:
        checks: (label, check) pairs, typically DiffChecker.category_checks()
        stop_event: Shared cancellation signal
    """
    if not checks:
        return
    with ThreadPoolExecutor(max_workers=len(checks), thread_name_prefix="das-category") as executor:
        futures = {}
        for label, check in checks:
            logger.info(f"{label} tests start")
            futures[executor.submit(_run_category, label, check, stop_event)] = label
        graceful_stop(futures)
