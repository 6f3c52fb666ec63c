"""
Version constraint matching (pure).

Constraint forms accepted in a manifest ``version`` field:

    latest / "" / *     any installed version
    1.2.3               exact (same as ==1.2.3)
    ==X  >=X  >X  <=X  <X
    ~=X                 same major, installed >= X

Versions that cannot be parsed are treated as satisfying the
constraint, so an odd version string never causes upgrade churn.
"""

from __future__ import annotations

import re

_OPERATORS = ("~=", ">=", "<=", "==", ">", "<")
_ANY = {"", "*", "latest", "any"}


def _parse(version: str) -> tuple[int, ...]:
    """'v1.2.3_1' → (1, 2, 3). Raises ValueError when no numbers lead."""
    cleaned = version.strip().lstrip("vV")
    parts = []
    for piece in re.split(r"[._]", cleaned):
        match = re.match(r"\d+", piece)
        if not match:
            break
        parts.append(int(match.group()))
    if not parts:
        raise ValueError(f"Unparseable version: {version!r}")
    return tuple(parts)


def _pad(a: tuple[int, ...], b: tuple[int, ...]) -> tuple[tuple[int, ...], tuple[int, ...]]:
    width = max(len(a), len(b))
    return a + (0,) * (width - len(a)), b + (0,) * (width - len(b))


def is_any_version(constraint: str) -> bool:
    return constraint.strip().lower() in _ANY


def satisfies(installed: str, constraint: str) -> bool:
    """Whether an installed version meets a manifest constraint."""
    constraint = constraint.strip()
    if is_any_version(constraint):
        return True

    op = "=="
    for candidate in _OPERATORS:
        if constraint.startswith(candidate):
            op = candidate
            constraint = constraint[len(candidate):].strip()
            break

    try:
        have, want = _pad(_parse(installed), _parse(constraint))
    except ValueError:
        return True

    if op == "==":
        # "3.11" matches 3.11.4: compare only the declared precision
        declared = len(_parse(constraint))
        return have[:declared] == want[:declared]
    if op == ">=":
        return have >= want
    if op == ">":
        return have > want
    if op == "<=":
        return have <= want
    if op == "<":
        return have < want
    # ~=: same major, at least the reference
    return have[0] == want[0] and have >= want
