"""
Shared string normalization utilities used across the planning modules.

Identity keys (paths, ids, encoded tokens) and orchestra names arrive in many
cosmetically different spellings; everything that compares them goes through
the helpers below.
"""
import base64
import binascii
import re
import unicodedata
from typing import Iterable, List, Optional
from urllib.parse import unquote

_FILE_SCHEME = re.compile(r"^file://", flags=re.IGNORECASE)
AUDIO_EXTENSIONS = {".mp3", ".flac", ".m4a", ".ogg", ".opus", ".wma", ".wav", ".aac", ".aif", ".aiff"}
_BASE64URL_CHARS = re.compile(r"^[A-Za-z0-9_-]+$")

# Ensemble boilerplate that does not change who the orchestra is
_ORIGIN_SUFFIX_PATTERNS: List[re.Pattern] = [
    re.compile(r"\s+O\.T\.\s+con\s+.*$", flags=re.IGNORECASE),
    re.compile(r"\s+y\s+su\s+orquesta.*$", flags=re.IGNORECASE),
    re.compile(r"\s+Y\s+Su.*$", flags=re.IGNORECASE),
]

_STYLE_ALIASES = {
    "tango": "Tango",
    "vals": "Vals",
    "valse": "Vals",
    "waltz": "Vals",
    "milonga": "Milonga",
}


def normalize_text(text: str, lowercase: bool = True, strip: bool = True) -> str:
    """
    Normalize text for consistent comparisons.

    Handles Unicode normalization (NFC), optional case folding, and whitespace.

    Args:
        text: Text to normalize
        lowercase: Apply case folding
        strip: Remove leading/trailing whitespace

    Returns:
        Normalized text string
    """
    if text is None:
        return ""

    text = unicodedata.normalize('NFC', str(text))

    if lowercase:
        text = text.casefold()

    if strip:
        text = text.strip()

    return text


def _normalize_identity_once(value: str) -> str:
    text = value.strip()
    text = _FILE_SCHEME.sub("", text)
    text = unquote(text)
    return text.replace("\\", "/").lower()


def normalize_identity(value: Optional[str]) -> str:
    """
    Normalize a track identity (path, id or URI) to its exact comparison key.

    Trims, drops a ``file://`` prefix, URL-decodes, converts backslashes to
    forward slashes and lower-cases. The steps repeat until the value stops
    changing, so ``normalize_identity(normalize_identity(x)) == normalize_identity(x)``
    holds even for double-encoded input.
    """
    if not value:
        return ""
    current = str(value)
    while True:
        nxt = _normalize_identity_once(current)
        if nxt == current:
            return nxt
        current = nxt


def strip_extension(key: str) -> str:
    """
    Remove a trailing audio file extension (``.mp3``, ``.wav``...).

    Other suffixes are kept, so ids like ``rec.1`` and ``rec.2`` stay distinct.
    """
    if not key:
        return key
    stem, dot, ext = key.rpartition(".")
    if dot and stem and f".{ext.lower()}" in AUDIO_EXTENSIONS:
        return stem
    return key


def match_key(value: Optional[str]) -> str:
    """Extension-less normalized key; bridges transcoded copies of one file."""
    return strip_extension(normalize_identity(value))


def decode_path_token(token: Optional[str]) -> Optional[str]:
    """
    Speculatively decode a base64url identity token.

    Accepts an optional single leading ``/`` (a known corrupted shape). The
    decoded form is returned only when it looks like a path.
    """
    if not token:
        return None
    text = str(token)
    if text.startswith("/"):
        text = text[1:]
    if not text or not _BASE64URL_CHARS.match(text):
        return None
    padded = text + "=" * (-len(text) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if "/" in decoded or "\\" in decoded:
        return decoded
    return None


def encode_path_token(path: str) -> str:
    """Encode a path as an unpadded base64url token."""
    return base64.urlsafe_b64encode(str(path).encode("utf-8")).decode("ascii").rstrip("=")


def identity_keys(raw_values: Iterable[Optional[str]]) -> List[str]:
    """
    Expand raw identity strings into every candidate comparison key.

    For each raw value yields its exact normalized key and its extension-less
    key, plus the same pair for the decoded form of opaque tokens.
    """
    keys: List[str] = []
    seen = set()
    for raw in raw_values:
        if not raw:
            continue
        variants = [str(raw)]
        decoded = decode_path_token(str(raw))
        if decoded:
            variants.append(decoded)
        for variant in variants:
            exact = normalize_identity(variant)
            if not exact:
                continue
            for key in (exact, strip_extension(exact)):
                if key and key not in seen:
                    seen.add(key)
                    keys.append(key)
    return keys


def normalize_origin_name(name: Optional[str]) -> str:
    """
    Strip ensemble boilerplate from an orchestra name.

    "Alfredo De Angelis O.T. con Carlos Dante" and "Alfredo De Angelis y su
    Orquesta Tipica" both become "Alfredo De Angelis". Never returns an empty
    string for non-empty input.
    """
    if not name:
        return ""
    original = str(name).strip()
    normalized = original
    for pattern in _ORIGIN_SUFFIX_PATTERNS:
        normalized = pattern.sub("", normalized)
    normalized = normalized.strip()
    return normalized or original


def normalize_artist_key(name: Optional[str]) -> str:
    """
    Normalize artist names to a stable comparison key.

    Steps:
    - Strip and collapse whitespace
    - Unicode NFKD + remove combining marks ("Aníbal" == "Anibal")
    - Casefold
    - Replace punctuation with spaces
    """
    if not name:
        return ""

    text = str(name).strip()
    if not text:
        return ""

    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.casefold()

    normalized = "".join(
        " " if unicodedata.category(ch).startswith("P") else ch for ch in text
    )
    normalized = " ".join(normalized.split())
    if normalized:
        return normalized

    # Punctuation-only names stay as they are
    return " ".join(text.split())


def origin_key(name: Optional[str]) -> str:
    """Comparison key for an orchestra name (boilerplate, accents and case folded)."""
    return normalize_artist_key(normalize_origin_name(name))


def canonical_style(value: Optional[str]) -> Optional[str]:
    """Map a genre token to Tango/Vals/Milonga, or None for anything else."""
    if not value:
        return None
    return _STYLE_ALIASES.get(normalize_text(value))
