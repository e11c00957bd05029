"""JSON-RPC request body sent to the DAS-API hosts and the chain RPC."""

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict

JSONRPC_VERSION = "2.0"
DEFAULT_REQUEST_ID = 0


@dataclass(frozen=True)
class Body:
    """
    One JSON-RPC request.

    Bodies are built once per attempt and never modified afterwards; to_dict()
    hands out a deep copy so a caller cannot reach the stored params.
    """
    method: str
    params: Any = field(default_factory=dict)
    id: int = DEFAULT_REQUEST_ID
    jsonrpc: str = JSONRPC_VERSION

    def __post_init__(self):
        object.__setattr__(self, 'params', copy.deepcopy(self.params))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'jsonrpc': self.jsonrpc,
            'id': self.id,
            'method': self.method,
            'params': copy.deepcopy(self.params),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def param(self, name: str, default: Any = None) -> Any:
        if isinstance(self.params, dict):
            return self.params.get(name, default)
        return default
