"""
Differential comparison of a testing DAS-API deployment against a reference.

For every method category the checker fetches keys, builds one request per
key and sends each request to both hosts at once. Mismatching responses are
retried with a pause between attempts, known-noise differences are removed by
the configured filters, and getAssetProof responses additionally have their
proofs validated against the chain. Per-category counters are kept until the
end of the run.

Requests within one category run strictly one after another with a fixed
pause, since both hosts rate-limit aggressively.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Pattern, Tuple

from .config import IntegrityVerificationConfig
from .das_api_client import DasApiClient
from .errors import FetchKeysError, IntegrityVerificationError, TransportError
from .json_diff import diff_json
from .keys_fetcher import KeysFetcher
from .proof_verifier import ProofVerifier
from .request_params import (
    GET_ASSET_BY_AUTHORITY_METHOD,
    GET_ASSET_BY_CREATOR_METHOD,
    GET_ASSET_BY_GROUP_METHOD,
    GET_ASSET_BY_OWNER_METHOD,
    GET_ASSET_METHOD,
    GET_ASSET_PROOF_METHOD,
    GET_SIGNATURES_FOR_ASSET,
    GET_TOKEN_ACCOUNTS_BY_MINT,
    GET_TOKEN_ACCOUNTS_BY_OWNER,
    GET_TOKEN_ACCOUNTS_BY_OWNER_AND_MINT,
    build_get_asset,
    build_get_asset_proof,
    build_get_assets_by_authority,
    build_get_assets_by_creator,
    build_get_assets_by_group,
    build_get_assets_by_owner,
    build_get_signatures_for_asset,
    build_get_token_accounts,
)
from .rpc_body import Body
from .solana_rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

# Shared by the paired host requests and the proof verifier lookups;
# each category has at most two calls in flight, so 20 covers every category
REQUEST_WORKERS = 20


@dataclass
class TestingResult:
    """Attempt counters for one method category."""
    __test__ = False

    total_tests: int = 0
    failed_tests: int = 0


class TestingResults:
    """
    Category name -> TestingResult, shared by all category threads.

    The lock is held only for the increment itself. Entries are created on
    first use and counters only ever grow.
    """
    __test__ = False

    def __init__(self):
        self._lock = threading.Lock()
        self._results: Dict[str, TestingResult] = {}

    def inc_total_tests(self, method: str):
        self._modify_result(method, 'total_tests')

    def inc_failed_tests(self, method: str):
        self._modify_result(method, 'failed_tests')

    def _modify_result(self, method: str, counter: str):
        with self._lock:
            result = self._results.setdefault(method, TestingResult())
            setattr(result, counter, getattr(result, counter) + 1)

    def snapshot(self) -> Dict[str, TestingResult]:
        """Copy of the current counters."""
        with self._lock:
            return {method: replace(result) for method, result in self._results.items()}


@dataclass
class DiffWithResponses:
    """Outcome of one paired call; both fields stay None when a host failed."""
    diff: Optional[str] = None
    testing_response: Any = None


class DiffChecker:
    """
    Comparison engine for the DAS-API methods under test.

    One check_* method per category; the orchestrator runs them concurrently,
    one thread each.
    """

    def __init__(
        self,
        config: IntegrityVerificationConfig,
        keys_fetcher: KeysFetcher,
        api: Optional[DasApiClient] = None,
        chain: Optional[SolanaRpcClient] = None,
        proof_verifier: Optional[ProofVerifier] = None,
        stop_event: Optional[threading.Event] = None
    ):
        """
        Initialize the checker.

        Args:
            config: Validated run configuration
            keys_fetcher: Source of keys for every category
            api: HTTP client for both hosts (built from config if omitted)
            chain: Chain state reader (built from config if omitted)
            proof_verifier: Proof checker (built from the above if omitted)
            stop_event: Shared cancellation signal
        """
        # Filters suppress differences between the hosts that are already known
        self.regexes: List[Pattern] = config.compiled_filters()
        self.reference_host = config.reference_host
        self.testing_host = config.testing_host
        self.test_retries = config.test_retries
        self.log_differences = config.log_differences
        self.requests_interval = config.requests_interval_seconds

        self.keys_fetcher = keys_fetcher
        self.api = api or DasApiClient(timeout=config.request_timeout)
        self.chain = chain or SolanaRpcClient(config.rpc_endpoint, self.api)
        self.stop_event = stop_event or threading.Event()
        self.test_results = TestingResults()

        self._executor = ThreadPoolExecutor(
            max_workers=REQUEST_WORKERS, thread_name_prefix="das-request"
        )
        self.proof_verifier = proof_verifier or ProofVerifier(
            self.reference_host, self.api, self.chain, executor=self._executor
        )

    def close(self):
        self._executor.shutdown(wait=True)

    # ========== Results ==========

    def show_results(self) -> Dict[str, TestingResult]:
        """Log the final per-category counters and return them."""
        results = self.test_results.snapshot()
        for method, result in results.items():
            logger.info(
                f"RESULTS OF {method} METHOD TEST: TESTED PUBKEYS TOTAL: "
                f"{result.total_tests}, FAILED TESTS: {result.failed_tests}"
            )
        return results

    # ========== Comparison ==========

    def compare_responses(self, reference_response: Any, testing_response: Any) -> Optional[str]:
        """
        Diff two responses and strip known differences.

        Returns:
            Remaining diff text, or None when nothing is left after filtering
        """
        diff = diff_json(reference_response, testing_response)
        if diff is None:
            return None

        for regex in self.regexes:
            diff = regex.sub("", diff)
        if not diff:
            return None

        return diff

    def check_request(self, req: Body) -> DiffWithResponses:
        """Send one body to both hosts concurrently and diff the answers."""
        payload = req.to_json()
        reference_future = self._executor.submit(
            self.api.make_request, self.reference_host, payload
        )
        testing_future = self._executor.submit(
            self.api.make_request, self.testing_host, payload
        )
        wait([reference_future, testing_future])

        try:
            reference_response = reference_future.result()
        except TransportError as e:
            logger.error(f"Reference host network error: {e}")
            return DiffWithResponses()
        try:
            testing_response = testing_future.result()
        except TransportError as e:
            logger.error(f"Testing host network error: {e}")
            return DiffWithResponses()

        return DiffWithResponses(
            diff=self.compare_responses(reference_response, testing_response),
            testing_response=testing_response,
        )

    def check_requests(self, category: str, requests: Iterable[Body]):
        """Run every request of a category one after another."""
        for req in requests:
            if self.stop_event.is_set():
                logger.info(f"{category}: stop requested, skipping remaining requests")
                break

            self.test_results.inc_total_tests(category)
            diff_with_responses = DiffWithResponses()
            for _ in range(self.test_retries):
                diff_with_responses = self.check_request(req)
                if diff_with_responses.diff is None:
                    break
                # Prevent rate-limit errors
                self._pause()

            test_failed = False
            if diff_with_responses.diff is not None:
                test_failed = True
                if self.log_differences:
                    logger.error(
                        f"{category}: mismatch responses: req: {req.to_json()}, "
                        f"diff: {diff_with_responses.diff}"
                    )

            if req.method == GET_ASSET_PROOF_METHOD and diff_with_responses.testing_response is not None:
                if not self._check_proof_valid(req.param('id', ''), diff_with_responses.testing_response):
                    test_failed = True

            if test_failed:
                self.test_results.inc_failed_tests(category)

            # Prevent rate-limit errors
            self._pause()

    def _check_proof_valid(self, asset_id: str, testing_response: Any) -> bool:
        try:
            proof_valid = self.proof_verifier.validate(asset_id, testing_response)
        except IntegrityVerificationError as e:
            logger.error(f"Check proof valid: {e}")
            return False
        if not proof_valid:
            logger.error(f"Invalid proof for {asset_id} asset")
        return proof_valid

    def _pause(self):
        if self.requests_interval > 0:
            self.stop_event.wait(self.requests_interval)

    # ========== Categories ==========

    def _check_category(
        self,
        category: str,
        fetch_keys: Callable[[], List[Any]],
        build: Callable[[Any], Body]
    ):
        try:
            keys = fetch_keys()
        except FetchKeysError:
            raise
        except Exception as e:
            raise FetchKeysError(f"{category}: {e}") from e

        self.check_requests(category, [build(key) for key in keys])

    def check_get_asset(self):
        self._check_category(
            GET_ASSET_METHOD,
            self.keys_fetcher.get_verification_required_assets_keys,
            build_get_asset,
        )

    def check_get_asset_proof(self):
        self._check_category(
            GET_ASSET_PROOF_METHOD,
            self.keys_fetcher.get_verification_required_assets_proof_keys,
            build_get_asset_proof,
        )

    def check_get_asset_by_owner(self):
        self._check_category(
            GET_ASSET_BY_OWNER_METHOD,
            self.keys_fetcher.get_verification_required_owners_keys,
            build_get_assets_by_owner,
        )

    def check_get_asset_by_authority(self):
        self._check_category(
            GET_ASSET_BY_AUTHORITY_METHOD,
            self.keys_fetcher.get_verification_required_authorities_keys,
            build_get_assets_by_authority,
        )

    def check_get_asset_by_creator(self):
        self._check_category(
            GET_ASSET_BY_CREATOR_METHOD,
            self.keys_fetcher.get_verification_required_creators_keys,
            build_get_assets_by_creator,
        )

    def check_get_asset_by_group(self):
        self._check_category(
            GET_ASSET_BY_GROUP_METHOD,
            self.keys_fetcher.get_verification_required_groups_keys,
            build_get_assets_by_group,
        )

    def check_get_token_accounts_by_owner(self):
        self._check_category(
            GET_TOKEN_ACCOUNTS_BY_OWNER,
            self.keys_fetcher.get_verification_required_tokens_by_owner,
            lambda owner: build_get_token_accounts(owner=owner),
        )

    def check_get_token_accounts_by_mint(self):
        self._check_category(
            GET_TOKEN_ACCOUNTS_BY_MINT,
            self.keys_fetcher.get_verification_required_tokens_by_mint,
            lambda mint: build_get_token_accounts(mint=mint),
        )

    def check_get_token_accounts_by_owner_and_mint(self):
        self._check_category(
            GET_TOKEN_ACCOUNTS_BY_OWNER_AND_MINT,
            self.keys_fetcher.get_verification_required_tokens_by_owner_and_mint,
            lambda pair: build_get_token_accounts(owner=pair[0], mint=pair[1]),
        )

    def check_get_signatures_for_asset(self):
        self._check_category(
            GET_SIGNATURES_FOR_ASSET,
            self.keys_fetcher.get_verification_required_signatures_for_asset,
            build_get_signatures_for_asset,
        )

    def category_checks(self) -> List[Tuple[str, Callable[[], None]]]:
        """(category label, check) for every supported category."""
        return [
            (GET_ASSET_METHOD, self.check_get_asset),
            (GET_ASSET_PROOF_METHOD, self.check_get_asset_proof),
            (GET_ASSET_BY_OWNER_METHOD, self.check_get_asset_by_owner),
            (GET_ASSET_BY_AUTHORITY_METHOD, self.check_get_asset_by_authority),
            (GET_ASSET_BY_CREATOR_METHOD, self.check_get_asset_by_creator),
            (GET_ASSET_BY_GROUP_METHOD, self.check_get_asset_by_group),
            (GET_TOKEN_ACCOUNTS_BY_OWNER, self.check_get_token_accounts_by_owner),
            (GET_TOKEN_ACCOUNTS_BY_MINT, self.check_get_token_accounts_by_mint),
            (GET_TOKEN_ACCOUNTS_BY_OWNER_AND_MINT, self.check_get_token_accounts_by_owner_and_mint),
            (GET_SIGNATURES_FOR_ASSET, self.check_get_signatures_for_asset),
        ]
