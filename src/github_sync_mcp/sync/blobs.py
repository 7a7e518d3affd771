"""Blob hashing and text/binary sniffing.

The tree-creation API only takes inline ``content`` for UTF-8 text, so
every file headed for a commit is sniffed first; anything that is not
plain text is uploaded as a standalone blob and referenced by SHA.
"""

from __future__ import annotations

import hashlib
import mimetypes

from charset_normalizer import from_bytes

OCTET_STREAM = "application/octet-stream"

# Non-text/* types whose payload is still plain text
TEXT_LIKE_TYPES = frozenset(
    {
        "application/json",
        "application/ld+json",
        "application/javascript",
        "application/xml",
        "application/yaml",
        "application/x-yaml",
        "application/toml",
        "image/svg+xml",
    }
)


def git_blob_sha(content: bytes) -> str:
    """SHA-1 of *content* as git hashes a blob object."""
    header = f"blob {len(content)}\0".encode("ascii")
    return hashlib.sha1(header + content).hexdigest()


def sniff_mime(path: str, content: bytes) -> str:
    """Best-effort MIME type from the file name, then the bytes.

    Files with an unknown extension are sniffed with charset-normalizer:
    anything it can decode is ``text/plain``, the rest is
    ``application/octet-stream``.
    """
    guessed, _ = mimetypes.guess_type(path, strict=False)
    if guessed:
        return guessed
    if not content:
        return "text/plain"
    if b"\0" in content:
        return OCTET_STREAM
    if from_bytes(content).best() is None:
        return OCTET_STREAM
    return "text/plain"


def is_plain_text(path: str, content: bytes) -> bool:
    """Whether *content* can go inline in a tree entry."""
    mime = sniff_mime(path, content)
    if not (mime.startswith("text/") or mime in TEXT_LIKE_TYPES):
        return False
    if b"\0" in content:
        return False
    try:
        content.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return True
