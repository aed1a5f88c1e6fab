"""
Content hashing for stale-file detection and trace identity.

Hashes cover content bytes only, so a block keeps its hash when it moves.
"""

import hashlib
from typing import Union

HASH_PREFIX = "sha256:"


def _to_bytes(content: Union[bytes, str]) -> bytes:
    if isinstance(content, bytes):
        return content
    return content.encode("utf-8")


def compute_content_hash(content: Union[bytes, str]) -> str:
    """SHA-256 hex digest of content (str is UTF-8 encoded)."""
    return hashlib.sha256(_to_bytes(content)).hexdigest()


def format_content_hash(content: Union[bytes, str]) -> str:
    """Digest in ledger form: sha256:<hex>"""
    return f"{HASH_PREFIX}{compute_content_hash(content)}"


def extract_block(content: Union[bytes, str], start_line: int, end_line: int) -> Union[bytes, str]:
    """
    Slice lines start_line..end_line (1-based, inclusive) out of content.

    Bytes in, bytes out, so the block hashes over the file's own encoding.
    Out-of-range bounds are clamped; an inverted range yields an empty block.
    """
    newline = b"\n" if isinstance(content, bytes) else "\n"
    lines = content.split(newline)
    start = max(start_line, 1)
    end = min(end_line, len(lines))
    if end < start:
        return content[:0]
    return newline.join(lines[start - 1:end])


def line_count(content: Union[bytes, str]) -> int:
    newline = b"\n" if isinstance(content, bytes) else "\n"
    return len(content.split(newline))
