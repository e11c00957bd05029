"""
Strict structural comparison of two JSON values.

Every mismatch becomes one path-qualified text block:

    json atom at path ".result.mutable" is missing from lhs
    json atom at path ".result.ownership" is missing from rhs
    json atoms at path ".result.id" are not equal:
        lhs:
            "abc"
        rhs:
            "abd"

Blocks are joined with a blank line. The difference filters configured by the
user are regular expressions applied to this text, so the wording here is part
of the configuration contract and must stay stable.
"""

import json
from typing import Any, List, Optional, Tuple

ROOT_PATH = "(root)"

PathKeys = Tuple[str, ...]


def format_path(keys: PathKeys) -> str:
    """Render path segments; the empty path is the root."""
    if not keys:
        return ROOT_PATH
    return ''.join(keys)


def _field(name: str) -> str:
    return f".{name}"


def _index(idx: int) -> str:
    return f"[{idx}]"


def _indent(text: str) -> str:
    return '\n'.join(f"        {line}" for line in text.splitlines())


def _json_to_string(value: Any) -> str:
    return json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False)


def describe_missing(keys: PathKeys, side: str) -> str:
    return f'json atom at path "{format_path(keys)}" is missing from {side}'


def describe_unequal(keys: PathKeys, lhs: Any, rhs: Any) -> str:
    return (
        f'json atoms at path "{format_path(keys)}" are not equal:\n'
        f"    lhs:\n{_indent(_json_to_string(lhs))}\n"
        f"    rhs:\n{_indent(_json_to_string(rhs))}\n"
    )


def _atoms_equal(lhs: Any, rhs: Any) -> bool:
    # bool is an int subclass and 1 == 1.0, so the types are compared too
    return type(lhs) is type(rhs) and lhs == rhs


def _diff_recursive(lhs: Any, rhs: Any, keys: PathKeys, acc: List[str]):
    """Recursive helper for diff_values."""
    if isinstance(lhs, dict) and isinstance(rhs, dict):
        for name in sorted(set(lhs) | set(rhs)):
            child = keys + (_field(name),)
            if name not in lhs:
                acc.append(describe_missing(child, "lhs"))
            elif name not in rhs:
                acc.append(describe_missing(child, "rhs"))
            else:
                _diff_recursive(lhs[name], rhs[name], child, acc)
        return

    if isinstance(lhs, list) and isinstance(rhs, list):
        for idx in range(max(len(lhs), len(rhs))):
            child = keys + (_index(idx),)
            if idx >= len(lhs):
                acc.append(describe_missing(child, "lhs"))
            elif idx >= len(rhs):
                acc.append(describe_missing(child, "rhs"))
            else:
                _diff_recursive(lhs[idx], rhs[idx], child, acc)
        return

    if isinstance(lhs, (dict, list)) or isinstance(rhs, (dict, list)):
        acc.append(describe_unequal(keys, lhs, rhs))
        return

    if not _atoms_equal(lhs, rhs):
        acc.append(describe_unequal(keys, lhs, rhs))


def diff_values(lhs: Any, rhs: Any) -> List[str]:
    """Return one description per mismatch between lhs and rhs."""
    differences: List[str] = []
    _diff_recursive(lhs, rhs, (), differences)
    return differences


def diff_json(lhs: Any, rhs: Any) -> Optional[str]:
    """
    Compare two JSON values strictly.

    Differing types, differing scalar values and keys or array items present
    on only one side are all reported.

    Returns:
        The joined diff text, or None when the values are equal
    """
    differences = diff_values(lhs, rhs)
    if not differences:
        return None
    return "\n\n".join(differences)
