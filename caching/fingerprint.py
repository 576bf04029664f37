"""Short deterministic keys for cache and dedup lookups."""

import hashlib
import json
from typing import Any

FINGERPRINT_LENGTH = 32


def fingerprint(payload: Any) -> str:
    # Fixed-size digest of the canonical JSON so keys stay short for long prompts.
    canonical = json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]
