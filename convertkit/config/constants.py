"""Constants for convertkit."""

from convertkit import __version__

# Application constants
APP_NAME = "convertkit"
APP_VERSION = __version__

# Default paths
DEFAULT_OUTPUT_DIR = "output"
DEFAULT_LOG_DIR = ".logs"
DEFAULT_CONFIG_FILE = "convertkit.yaml"

# Worker timeouts (seconds)
DEFAULT_HANDSHAKE_TIMEOUT = 5.0
DEFAULT_CONVERSION_TIMEOUT = 120.0
DEFAULT_READINESS_GRACE = 1.0
DEFAULT_TERMINATE_TIMEOUT = 2.0

# Per-category upload ceilings (MB)
DEFAULT_IMAGE_MAX_MB = 10
DEFAULT_AUDIO_MAX_MB = 50
DEFAULT_DOCUMENT_MAX_MB = 25
DEFAULT_VIDEO_MAX_MB = 75
DEFAULT_CODE_MAX_MB = 5

# Format allow-lists: (source formats, target formats)
IMAGE_FORMATS = (
    ("jpg", "jpeg", "png", "webp", "gif", "bmp", "tiff"),
    ("jpg", "jpeg", "png", "webp", "gif", "bmp"),
)
AUDIO_FORMATS = (
    ("mp3", "wav", "ogg", "aac", "flac"),
    ("mp3", "wav", "ogg"),
)
DOCUMENT_FORMATS = (
    ("pdf", "txt", "html", "md"),
    ("pdf", "txt", "html", "md"),
)
VIDEO_FORMATS = (
    ("mp4", "webm", "gif"),
    ("mp4", "webm", "gif"),
)

# Code file extension -> language handled by the minifier/beautifier
CODE_LANGUAGES = {
    "js": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "css": "css",
    "html": "html",
    "htm": "html",
    "xhtml": "html",
    "json": "json",
    "xml": "xml",
    "svg": "xml",
    "py": "python",
    "pyw": "python",
    "sql": "sql",
    "md": "markdown",
    "markdown": "markdown",
}
CODE_FORMATS = tuple(CODE_LANGUAGES)

# Extension aliases that name the same encoding
FORMAT_ALIASES = {
    "jpeg": "jpg",
    "tif": "tiff",
    "htm": "html",
    "markdown": "md",
}

# Output name markers for code conversions
MINIFIED_MARKER = ".min"
FORMATTED_MARKER = ".formatted"

# MIME types by extension
MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "tiff": "image/tiff",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "html": "text/html",
    "htm": "text/html",
    "md": "text/markdown",
    "css": "text/css",
    "js": "text/javascript",
    "mjs": "text/javascript",
    "json": "application/json",
    "xml": "application/xml",
    "svg": "image/svg+xml",
    "py": "text/x-python",
    "sql": "application/sql",
}

# Image encoder defaults
DEFAULT_IMAGE_QUALITY = 92

# Transcoder defaults
DEFAULT_FFMPEG_PATH = "ffmpeg"
DEFAULT_AUDIO_BITRATE_KBPS = 128
DEFAULT_GIF_FILTER = "fps=10,scale=320:-1:flags=lanczos"

# OCR defaults
DEFAULT_OCR_LANGUAGE = "eng"
