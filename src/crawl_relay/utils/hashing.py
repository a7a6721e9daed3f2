"""Hashing utilities.

Signatures are stored as SHA-256 hex strings so they survive JSON round trips
and compare with plain string equality.

Why SHA-256:
- deterministic across machines
- stable for change detection across crawl sessions
"""

import hashlib
from typing import BinaryIO

_CHUNK = 64 * 1024

def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8", errors="surrogatepass")).hexdigest()

def sha256_stream_hex(stream: BinaryIO) -> str:
    h = hashlib.sha256()
    for block in iter(lambda: stream.read(_CHUNK), b""):
        h.update(block)
    return h.hexdigest()
