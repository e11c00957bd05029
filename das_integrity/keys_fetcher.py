"""
Key sources for the method categories under test.

KeysFetcher is the capability the comparison engine consumes; any object with
these accessors can be passed in (a fixed in-memory double in the tests, the
key file in production).

Key file format::

    getAsset:
    AssetKey1,AssetKey2
    AssetKey3
    getTokenAccountsByOwnerAndMint:
    (Owner1;Mint1),(Owner2;Mint2)

A line ending in ':' starts a category block; every following non-empty line
holds comma-separated keys for that category.
"""

import logging
import random
from collections import defaultdict
from typing import Dict, List, Optional, Protocol, Tuple

from .errors import FetchKeysError
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
    parse_owner_and_mint,
)

logger = logging.getLogger(__name__)


class KeysFetcher(Protocol):
    """Supplies the keys to test for every method category."""

    def get_verification_required_owners_keys(self) -> List[str]: ...

    def get_verification_required_creators_keys(self) -> List[str]: ...

    def get_verification_required_authorities_keys(self) -> List[str]: ...

    def get_verification_required_groups_keys(self) -> List[str]: ...

    def get_verification_required_assets_keys(self) -> List[str]: ...

    def get_verification_required_assets_proof_keys(self) -> List[str]: ...

    def get_verification_required_tokens_by_owner(self) -> List[str]: ...

    def get_verification_required_tokens_by_mint(self) -> List[str]: ...

    def get_verification_required_tokens_by_owner_and_mint(self) -> List[Tuple[str, str]]: ...

    def get_verification_required_signatures_for_asset(self) -> List[str]: ...


def parse_keys(lines) -> Dict[str, List[str]]:
    """Parse key-file lines into a category -> keys mapping."""
    keys_map: Dict[str, List[str]] = defaultdict(list)
    current_category: Optional[str] = None

    for raw_line in lines:
        line = raw_line.rstrip('\r\n').rstrip()
        if line.endswith(':'):
            current_category = line[:-1].strip()
            continue
        if current_category is None or not line:
            continue
        for key in line.split(','):
            key = key.strip()
            if key:
                keys_map[current_category].append(key)

    return dict(keys_map)


class FileKeysFetcher:
    """KeysFetcher backed by a key file loaded once at startup."""

    def __init__(self, keys_map: Dict[str, List[str]], seed: Optional[int] = None):
        self.keys_map = keys_map
        self._rnd = random.Random(seed)

    @classmethod
    def from_file(cls, file_path: str, seed: Optional[int] = None) -> 'FileKeysFetcher':
        """
        Load a key file.

        Raises:
            FetchKeysError: if the file cannot be read
        """
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                keys_map = parse_keys(f)
        except OSError as e:
            raise FetchKeysError(f"{file_path}: {e}") from e

        for category, keys in keys_map.items():
            logger.info(f"Loaded {len(keys)} keys for {category}")
        return cls(keys_map, seed=seed)

    def read_keys(self, category: str) -> List[str]:
        return list(self.keys_map.get(category, []))

    def get_random_command(self) -> Tuple[str, str]:
        """Pick a random (category, key) pair across all loaded keys."""
        categories = [c for c, keys in self.keys_map.items() if keys]
        if not categories:
            raise FetchKeysError("no keys loaded")
        category = self._rnd.choice(categories)
        return category, self._rnd.choice(self.keys_map[category])

    def get_verification_required_owners_keys(self) -> List[str]:
        return self.read_keys(GET_ASSET_BY_OWNER_METHOD)

    def get_verification_required_creators_keys(self) -> List[str]:
        return self.read_keys(GET_ASSET_BY_CREATOR_METHOD)

    def get_verification_required_authorities_keys(self) -> List[str]:
        return self.read_keys(GET_ASSET_BY_AUTHORITY_METHOD)

    def get_verification_required_groups_keys(self) -> List[str]:
        return self.read_keys(GET_ASSET_BY_GROUP_METHOD)

    def get_verification_required_assets_keys(self) -> List[str]:
        return self.read_keys(GET_ASSET_METHOD)

    def get_verification_required_assets_proof_keys(self) -> List[str]:
        return self.read_keys(GET_ASSET_PROOF_METHOD)

    def get_verification_required_tokens_by_owner(self) -> List[str]:
        return self.read_keys(GET_TOKEN_ACCOUNTS_BY_OWNER)

    def get_verification_required_tokens_by_mint(self) -> List[str]:
        return self.read_keys(GET_TOKEN_ACCOUNTS_BY_MINT)

    def get_verification_required_tokens_by_owner_and_mint(self) -> List[Tuple[str, str]]:
        pairs = []
        for token in self.read_keys(GET_TOKEN_ACCOUNTS_BY_OWNER_AND_MINT):
            try:
                pairs.append(parse_owner_and_mint(token))
            except ValueError as e:
                raise FetchKeysError(str(e)) from e
        return pairs

    def get_verification_required_signatures_for_asset(self) -> List[str]:
        return self.read_keys(GET_SIGNATURES_FOR_ASSET)
