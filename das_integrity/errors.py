"""
Error types for the DAS-API integrity verification harness.

Every failure the harness can observe derives from IntegrityVerificationError,
so callers that only care about "this check could not complete" can catch the
base class, while the engine distinguishes transport failures (skipped) from
proof failures (recorded) by subclass.
"""

from typing import Optional


class IntegrityVerificationError(Exception):
    """Base class for all harness errors."""


# ========== Transport ==========

class TransportError(IntegrityVerificationError):
    """A host could not produce a usable JSON response."""


class RequestError(TransportError):
    """Connection-level failure raised by the HTTP layer."""

    def __init__(self, url: str, cause: Exception):
        self.url = url
        self.cause = cause
        super().__init__(f"Request {url}: {cause}")


class ResponseStatusCodeError(TransportError):
    """Host answered with a status other than 200."""

    def __init__(self, status_code: int, url: Optional[str] = None):
        self.status_code = status_code
        self.url = url
        super().__init__(f"ResponseStatusCode: {status_code}")


class ResponseDecodeError(TransportError):
    """Host answered 200 but the body is not JSON."""

    def __init__(self, url: str, cause: Exception):
        self.url = url
        self.cause = cause
        super().__init__(f"Json {url}: {cause}")


class RpcError(IntegrityVerificationError):
    """Chain RPC answered with a JSON-RPC error object."""

    def __init__(self, method: str, error: object):
        self.method = method
        self.error = error
        super().__init__(f"RPC {method}: {error}")


# ========== Keys ==========

class FetchKeysError(IntegrityVerificationError):
    """The key source for a category is unavailable or malformed."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"FetchKeys {message}")


# ========== Proof checks ==========

class ResponseFieldError(IntegrityVerificationError):
    """A field required for proof validation is missing or mistyped."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Cannot get response field {field}")


class InvalidPubkeyError(IntegrityVerificationError):
    """A base58 string does not decode to a 32-byte key or hash."""

    def __init__(self, value: str, reason: str = "invalid base58"):
        self.value = value
        super().__init__(f"ParsePubkey {value!r}: {reason}")


class NullAssetAccountError(IntegrityVerificationError):
    """The chain has no account for the tree id."""

    def __init__(self, tree_id: str):
        self.tree_id = tree_id
        super().__init__(f"NullAssetAccount: {tree_id}")


class TreeStructureError(IntegrityVerificationError):
    """Tree account bytes do not match the concurrent Merkle tree layout."""


class TreeHeaderError(TreeStructureError):
    pass


class CannotCreateMerkleTreeError(TreeStructureError):

    def __init__(self, max_depth: int, max_buffer_size: int):
        self.max_depth = max_depth
        self.max_buffer_size = max_buffer_size
        super().__init__(
            f"CannotCreateMerkleTree: depth [{max_depth}], size [{max_buffer_size}]"
        )


class TreeDataLengthError(TreeStructureError):
    pass


class CanopyLengthMismatchError(TreeStructureError):
    pass


class LeafIndexOutOfBoundsError(TreeStructureError):

    def __init__(self, leaf_index: int, limit: int):
        self.leaf_index = leaf_index
        self.limit = limit
        super().__init__(f"LeafIndexOutOfBounds: {leaf_index} (limit {limit})")


class ProofLengthError(TreeStructureError):

    def __init__(self, length: int, max_depth: int):
        self.length = length
        self.max_depth = max_depth
        super().__init__(
            f"Proof length {length} does not match tree depth {max_depth}"
        )


# ========== Configuration ==========

class ConfigError(IntegrityVerificationError):
    """Configuration file missing, unreadable or incomplete."""


class ConfigValidationError(ConfigError):

    def __init__(self, field: str, detail: str = ""):
        self.field = field
        message = f"ValidateConfig: {field}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InvalidRegexError(ConfigError):

    def __init__(self, pattern: str, cause: Exception):
        self.pattern = pattern
        super().__init__(f"InvalidRegex: {pattern!r}: {cause}")
