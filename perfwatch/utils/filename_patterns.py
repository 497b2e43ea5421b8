"""
Filename Patterns
=================
Classifies build-output filenames by the conventions bundlers use.

Shared by the asset analyzer and the cache classifier so both agree on what
"content hashed" means.

Recognised conventions:
    app.3f2a9c1d.js          — hash segment of 8+ hex chars
    main-3f2a9c1d.css        — dash-separated hash segment
    2.chunk.js               — `.chunk.` infix
    vendors~main.js          — webpack vendor split
"""
import re
from pathlib import PurePosixPath

from perfwatch.core.constants import (
    FONT_EXTENSIONS,
    IMAGE_EXTENSIONS,
    SCRIPT_EXTENSIONS,
    STYLE_EXTENSIONS,
)

_HASH_SEGMENT_RE = re.compile(r"[.\-_][0-9a-f]{8,}\.", re.IGNORECASE)
_CHUNK_INFIX_RE = re.compile(r"\.chunk\.", re.IGNORECASE)
_VENDOR_RE = re.compile(r"vendor|node_modules", re.IGNORECASE)

# Same convention as _HASH_SEGMENT_RE / _CHUNK_INFIX_RE, anchored to the last
# URI segment; used for proxy location blocks (nginx `~*`, case-insensitive).
CONTENT_HASH_URI_PATTERN = r"([.\-_][0-9a-f]{8,}|\.chunk)\.[^/]*$"


def basename(path: str) -> str:
    return PurePosixPath(path.replace("\\", "/")).name


def extension(path: str) -> str:
    """Lowercased final suffix including the dot ('' when absent)."""
    return PurePosixPath(path.replace("\\", "/")).suffix.lower()


def has_content_hash(path: str) -> bool:
    """True when the filename carries a content digest or a `.chunk.` infix."""
    name = basename(path)
    return bool(_HASH_SEGMENT_RE.search(name) or _CHUNK_INFIX_RE.search(name))


def is_chunk_file(path: str) -> bool:
    """Bundler chunk: a hashed or `.chunk.` js/css file."""
    ext = extension(path)
    if ext not in SCRIPT_EXTENSIONS and ext not in STYLE_EXTENSIONS:
        return False
    return has_content_hash(path)


def is_vendor_file(path: str) -> bool:
    name = basename(path)
    return bool(_VENDOR_RE.search(name)) or name.startswith("vendors~")


def asset_type(path: str) -> str:
    """Map a path to one of: js, css, image, font, other."""
    ext = extension(path)
    if ext in SCRIPT_EXTENSIONS:
        return "js"
    if ext in STYLE_EXTENSIONS:
        return "css"
    if ext in IMAGE_EXTENSIONS:
        return "image"
    if ext in FONT_EXTENSIONS:
        return "font"
    return "other"
