"""
Constants
Centralised storage for bundle kinds, severity ranks, and cache-control strings.
"""
# Category iteration order is also the Issue discovery order.
BUNDLE_KINDS = ["frontend", "backend", "database", "bundle", "cache"]

SEVERITY_RANK = {"high": 3, "medium": 2, "low": 1}
MAX_PRIORITIZED_ACTIONS = 10

CACHE_CONTROL_IMMUTABLE = "public, max-age=31536000, immutable"
CACHE_CONTROL_LONG_TERM = "public, max-age=2592000"
CACHE_CONTROL_SHORT_TERM = "public, max-age=86400"
CACHE_CONTROL_HTML = "public, max-age=3600, must-revalidate"
CACHE_CONTROL_NO_CACHE = "no-cache, no-store, must-revalidate"
CACHE_CONTROL_DEFAULT = "public, max-age=3600"

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif", ".svg", ".ico"}
FONT_EXTENSIONS = {".woff", ".woff2", ".ttf", ".eot", ".otf"}
SCRIPT_EXTENSIONS = {".js", ".mjs", ".cjs"}
STYLE_EXTENSIONS = {".css"}
HTML_EXTENSIONS = {".html", ".htm"}
