"""
HashChain primitive - one-way digests used to build the exam identity chain.

UID -> digest -> UID_HASH -> digest -> FINAL_HASH

All functions are pure and deterministic. The algorithm defaults to SHA-256
and can be switched to another fixed-output algorithm from hashlib through
FAIRTEST_HASH_ALGORITHM.
"""

import hashlib
import json
import os
from typing import Any, List, Union

HASH_ALGORITHM = os.getenv("FAIRTEST_HASH_ALGORITHM", "sha256").lower()

# Variable-length (XOF) digests need an explicit length and are rejected.
_FIXED_OUTPUT_ALGORITHMS = {
    name for name in hashlib.algorithms_guaranteed
    if not name.startswith("shake_")
}

if HASH_ALGORITHM not in _FIXED_OUTPUT_ALGORITHMS:
    raise ValueError(
        "FAIRTEST_HASH_ALGORITHM must be one of {}, got '{}'".format(
            sorted(_FIXED_OUTPUT_ALGORITHMS), HASH_ALGORITHM)
    )


def digest(data: Union[bytes, str]) -> str:
    """
    Hash bytes or text and return the lowercase hex digest.

    Text is UTF-8 encoded before hashing.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.new(HASH_ALGORITHM, data).hexdigest()


def canonical_json(value: Any) -> str:
    """Serialize a JSON-able value with sorted keys and compact separators."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def digest_json(value: Any) -> str:
    """Digest of the canonical JSON form, so key order never changes the hash."""
    return digest(canonical_json(value))


def chain(seed: Union[bytes, str], rounds: int) -> List[str]:
    """
    Apply `digest` repeatedly.

    Returns the list of successive digests: [h(seed), h(h(seed)), ...].
    """
    if rounds < 1:
        raise ValueError("rounds must be >= 1")
    links = []
    current = seed
    for _ in range(rounds):
        current = digest(current)
        links.append(current)
    return links
