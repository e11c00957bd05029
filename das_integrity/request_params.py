"""
Request parameter records for the DAS-API methods under test.

Each record serialises to the camelCase shape the API expects, omitting unset
optional fields. The build_* helpers turn a raw key from the key file into a
ready-to-send Body.
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from .rpc_body import Body

# ========== Method categories ==========

GET_ASSET_METHOD = "getAsset"
GET_ASSET_PROOF_METHOD = "getAssetProof"
GET_ASSET_BY_OWNER_METHOD = "getAssetsByOwner"
GET_ASSET_BY_AUTHORITY_METHOD = "getAssetsByAuthority"
GET_ASSET_BY_GROUP_METHOD = "getAssetsByGroup"
GET_ASSET_BY_CREATOR_METHOD = "getAssetsByCreator"
GET_TOKEN_ACCOUNTS_BY_OWNER = "getTokenAccountsByOwner"
GET_TOKEN_ACCOUNTS_BY_MINT = "getTokenAccountsByMint"
GET_TOKEN_ACCOUNTS_BY_OWNER_AND_MINT = "getTokenAccountsByOwnerAndMint"
GET_SIGNATURES_FOR_ASSET = "getSignaturesForAsset"

# The three token-account categories share one RPC method
GET_TOKEN_ACCOUNTS_RPC_METHOD = "getTokenAccounts"

DEFAULT_GROUP_KEY = "collection"


class AssetSortBy(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    RECENT_ACTION = "recent_action"
    NONE = "none"


class AssetSortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


def _camel_case(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


def _to_wire(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, 'to_params'):
        return value.to_params()
    return value


class _Params:
    """Mixin serialising dataclass fields to camelCase, skipping None."""

    def to_params(self) -> Dict[str, Any]:
        params = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            params[_camel_case(f.name)] = _to_wire(value)
        return params


@dataclass
class AssetSorting(_Params):
    sort_by: AssetSortBy = AssetSortBy.CREATED
    sort_direction: Optional[AssetSortDirection] = AssetSortDirection.DESC


@dataclass
class GetAsset(_Params):
    id: str


@dataclass
class GetAssetProof(_Params):
    id: str


@dataclass
class GetAssetsByOwner(_Params):
    owner_address: str
    sort_by: Optional[AssetSorting] = None
    limit: Optional[int] = None
    page: Optional[int] = None
    before: Optional[str] = None
    after: Optional[str] = None


@dataclass
class GetAssetsByAuthority(_Params):
    authority_address: str
    sort_by: Optional[AssetSorting] = None
    limit: Optional[int] = None
    page: Optional[int] = None
    before: Optional[str] = None
    after: Optional[str] = None


@dataclass
class GetAssetsByCreator(_Params):
    creator_address: str
    only_verified: Optional[bool] = None
    sort_by: Optional[AssetSorting] = None
    limit: Optional[int] = None
    page: Optional[int] = None
    before: Optional[str] = None
    after: Optional[str] = None


@dataclass
class GetAssetsByGroup(_Params):
    group_key: str
    group_value: str
    sort_by: Optional[AssetSorting] = None
    limit: Optional[int] = None
    page: Optional[int] = None
    before: Optional[str] = None
    after: Optional[str] = None


@dataclass
class GetTokenAccounts(_Params):
    owner_address: Optional[str] = None
    mint_address: Optional[str] = None
    limit: Optional[int] = None
    page: Optional[int] = None
    before: Optional[str] = None
    after: Optional[str] = None
    cursor: Optional[str] = None


@dataclass
class GetSignaturesForAsset(_Params):
    id: str
    limit: Optional[int] = None
    page: Optional[int] = None
    before: Optional[str] = None
    after: Optional[str] = None


# ========== Body builders ==========

def build_get_asset(asset_id: str) -> Body:
    return Body(GET_ASSET_METHOD, GetAsset(id=asset_id).to_params())


def build_get_asset_proof(asset_id: str) -> Body:
    return Body(GET_ASSET_PROOF_METHOD, GetAssetProof(id=asset_id).to_params())


def build_get_assets_by_owner(owner: str, limit: Optional[int] = None,
                              page: Optional[int] = None) -> Body:
    params = GetAssetsByOwner(
        owner_address=owner, sort_by=AssetSorting(), limit=limit, page=page
    )
    return Body(GET_ASSET_BY_OWNER_METHOD, params.to_params())


def build_get_assets_by_authority(authority: str, limit: Optional[int] = None,
                                  page: Optional[int] = None) -> Body:
    params = GetAssetsByAuthority(
        authority_address=authority, sort_by=AssetSorting(), limit=limit, page=page
    )
    return Body(GET_ASSET_BY_AUTHORITY_METHOD, params.to_params())


def build_get_assets_by_creator(creator: str, limit: Optional[int] = None,
                                page: Optional[int] = None) -> Body:
    params = GetAssetsByCreator(
        creator_address=creator, sort_by=AssetSorting(), limit=limit, page=page
    )
    return Body(GET_ASSET_BY_CREATOR_METHOD, params.to_params())


def build_get_assets_by_group(group_value: str, limit: Optional[int] = None,
                              page: Optional[int] = None) -> Body:
    params = GetAssetsByGroup(
        group_key=DEFAULT_GROUP_KEY,
        group_value=group_value,
        sort_by=AssetSorting(),
        limit=limit,
        page=page,
    )
    return Body(GET_ASSET_BY_GROUP_METHOD, params.to_params())


def build_get_token_accounts(owner: Optional[str] = None,
                             mint: Optional[str] = None) -> Body:
    params = GetTokenAccounts(owner_address=owner, mint_address=mint)
    return Body(GET_TOKEN_ACCOUNTS_RPC_METHOD, params.to_params())


def build_get_signatures_for_asset(asset_id: str) -> Body:
    return Body(GET_SIGNATURES_FOR_ASSET, GetSignaturesForAsset(id=asset_id).to_params())


def parse_owner_and_mint(token: str) -> Tuple[str, str]:
    """
    Parse an "(owner;mint)" key-file token.

    Raises:
        ValueError: if the token is not a parenthesised pair
    """
    token = token.strip()
    if not (token.startswith('(') and token.endswith(')')):
        raise ValueError(f"expected '(owner;mint)', got {token!r}")
    parts = token[1:-1].split(';')
    if len(parts) != 2 or not all(p.strip() for p in parts):
        raise ValueError(f"expected '(owner;mint)', got {token!r}")
    return parts[0].strip(), parts[1].strip()


def _build_owner_and_mint(token: str) -> Body:
    owner, mint = parse_owner_and_mint(token)
    return build_get_token_accounts(owner, mint)


# Category name -> builder taking one raw key-file token
REQUEST_BUILDERS: Dict[str, Callable[[str], Body]] = {
    GET_ASSET_METHOD: build_get_asset,
    GET_ASSET_PROOF_METHOD: build_get_asset_proof,
    GET_ASSET_BY_OWNER_METHOD: build_get_assets_by_owner,
    GET_ASSET_BY_AUTHORITY_METHOD: build_get_assets_by_authority,
    GET_ASSET_BY_CREATOR_METHOD: build_get_assets_by_creator,
    GET_ASSET_BY_GROUP_METHOD: build_get_assets_by_group,
    GET_TOKEN_ACCOUNTS_BY_OWNER: lambda owner: build_get_token_accounts(owner=owner),
    GET_TOKEN_ACCOUNTS_BY_MINT: lambda mint: build_get_token_accounts(mint=mint),
    GET_TOKEN_ACCOUNTS_BY_OWNER_AND_MINT: _build_owner_and_mint,
    GET_SIGNATURES_FOR_ASSET: build_get_signatures_for_asset,
}


def build_request(category: str, key: str) -> Body:
    """Build the request body for one raw key of a category."""
    try:
        builder = REQUEST_BUILDERS[category]
    except KeyError:
        raise ValueError(f"Unknown method category: {category}")
    return builder(key)
