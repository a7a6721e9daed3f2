import json, hashlib
from typing import Any

def stable_fingerprint(obj: Any) -> str:
    """Order-independent digest of a config object (non-JSON values are stringified)."""
    blob = json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()
