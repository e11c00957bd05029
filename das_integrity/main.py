#!/usr/bin/env python3
"""
DAS-API Integrity Verification

Compares a testing DAS-API deployment against a reference deployment and
validates asset proofs against the chain, or generates load against the
testing deployment.

Usage:
    # Differential integrity check
    das-integrity --config-path config.json --test-type integrity

    # Load generation
    das-integrity --config-path config.json --test-type performance

Config file (JSON):
    {
        "reference_host": "https://reference.example/",
        "testing_host": "https://testing.example/",
        "rpc_endpoint": "https://api.mainnet-beta.solana.com",
        "testing_file_path": "keys.txt",
        "test_retries": 20,
        "log_differences": true,
        "difference_filter_regexes": [
            "json atom at path \\".*?\\\\.token_standard\\" is missing from rhs\\n*"
        ]
    }

Environment variables:
    DAS_REFERENCE_HOST, DAS_TESTING_HOST, DAS_RPC_ENDPOINT,
    DAS_TESTING_FILE_PATH - override the corresponding config keys
"""

import argparse
import logging
import sys
import threading

from .config import setup_config
from .diff_checker import DiffChecker
from .errors import ConfigError, FetchKeysError
from .graceful_stop import listen_shutdown, run_tests
from .keys_fetcher import FileKeysFetcher
from .performance import run_performance_tests

logger = logging.getLogger(__name__)

TEST_TYPE_INTEGRITY = 'integrity'
TEST_TYPE_PERFORMANCE = 'performance'


def run_integrity(config, keys_fetcher, stop_event) -> int:
    """Run every category check and print the per-category report."""
    diff_checker = DiffChecker(config, keys_fetcher, stop_event=stop_event)
    try:
        run_tests(diff_checker.category_checks(), stop_event)
    finally:
        diff_checker.close()

    logger.info("=" * 50)
    logger.info("Results")
    logger.info("=" * 50)
    diff_checker.show_results()
    return 0


def run_performance(config, keys_fetcher, stop_event) -> int:
    """Run load generation against the testing host."""
    logger.info(f"Virtual users: {config.num_of_virtual_users}")
    logger.info(f"Duration: {config.test_duration_time}s")
    run_performance_tests(
        config.num_of_virtual_users,
        config.test_duration_time,
        keys_fetcher,
        config.testing_host,
        stop_event=stop_event,
    )
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description='DAS-API integrity verification',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        '-c', '--config-path', required=True,
        help='Path to the JSON configuration file'
    )
    parser.add_argument(
        '-t', '--test-type', choices=[TEST_TYPE_INTEGRITY, TEST_TYPE_PERFORMANCE],
        default=TEST_TYPE_INTEGRITY,
        help='Differential integrity check or load generation (default: integrity)'
    )
    parser.add_argument(
        '--log-level', default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: INFO)'
    )
    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    logger.info("DAS-API tests start")

    try:
        config = setup_config(args.config_path)
        keys_fetcher = FileKeysFetcher.from_file(config.testing_file_path)
    except (ConfigError, FetchKeysError) as e:
        logger.error(f"Startup failed: {e}")
        return 1

    stop_event = threading.Event()
    listen_shutdown(stop_event)

    if args.test_type == TEST_TYPE_PERFORMANCE:
        return run_performance(config, keys_fetcher, stop_event)
    return run_integrity(config, keys_fetcher, stop_event)


if __name__ == "__main__":
    sys.exit(main())
