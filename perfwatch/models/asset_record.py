"""
Asset Record Model
==================
One analyzed file from a build-output tree.

Core fields (always populated):
    path                — build-root-relative, forward slashes
    type                — js | css | image | font | other
    size_bytes          — on-disk size
    gzip_size_bytes     — size after gzip at a fixed level (0 when unreadable)
    has_content_hash    — filename carries a content digest
    is_chunk            — bundler chunk (hashed or `.chunk.` js/css)
    is_vendor           — vendor split bundle
    minified_heuristic  — long average line length over few lines

Advisory fields (text assets only, regex-based, approximate):
    line_count, has_source_map, imports, requires, external_dependencies,
    duplicate_functions, css_rules, css_selectors, css_state_selectors
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

AssetType = Literal["js", "css", "image", "font", "other"]


class AssetRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    type: AssetType
    size_bytes: int
    gzip_size_bytes: int = 0
    has_content_hash: bool = False
    is_chunk: bool = False
    is_vendor: bool = False
    minified_heuristic: bool = False

    # --- Advisory details ---
    line_count: Optional[int] = None
    has_source_map: bool = False
    imports: int = 0
    requires: int = 0
    external_dependencies: int = 0
    duplicate_functions: int = 0
    css_rules: int = 0
    css_selectors: int = 0
    css_state_selectors: int = 0
