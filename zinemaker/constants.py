from __future__ import annotations

from typing import Final

# Width/height in millimeters at the base (portrait) orientation.
PAPER_SIZES: Final[dict[str, tuple[float, float]]] = {
    "a3": (297.0, 420.0),
    "a4": (210.0, 297.0),
    "a5": (148.0, 210.0),
    "legal": (215.9, 355.6),
    "letter": (215.9, 279.4),
}

PAPER_LABELS: Final[dict[str, str]] = {
    "a3": "A3 (297 × 420 mm)",
    "a4": "A4 (210 × 297 mm)",
    "a5": "A5 (148 × 210 mm)",
    "legal": "Legal (8.5 × 14 in)",
    "letter": "Letter (8.5 × 11 in)",
}

DEFAULT_PAPER_SIZE: Final[str] = "a4"
DEFAULT_ORIENTATION: Final[str] = "landscape"

POINTS_PER_MM: Final[float] = 72.0 / 25.4

# Page rasterization multiplier relative to the source page's native 72 dpi.
RASTER_SAMPLE_SCALE: Final[float] = 2.5
PREVIEW_PIXELS_PER_MM: Final[int] = 4
EXPORT_CAPTURE_SCALE: Final[int] = 2
EXPORT_PIXELS_PER_MM: Final[int] = PREVIEW_PIXELS_PER_MM * EXPORT_CAPTURE_SCALE

FALLBACK_PAGE_SIZE: Final[tuple[int, int]] = (1000, 1400)
BLANK_PAGE_COLOR: Final[str] = "#ffffff"

MAX_SOURCE_BYTES: Final[int] = 50 * 1024 * 1024
SOURCE_MEDIA_TYPE: Final[str] = "application/pdf"
LOAD_TIMEOUT_SECONDS: Final[float] = 30.0

REFERENCE_IMAGE_NAME: Final[str] = "reference-back-side.pgm"

DEFAULT_ARTIFACT_DIR: Final[str] = "generated"
DEFAULT_ARTIFACT_RETENTION_SECONDS: Final[int] = 24 * 60 * 60
SETTINGS_PATH_ENV: Final[str] = "ZINEMAKER_SETTINGS_PATH"
DEFAULT_SETTINGS_FILENAME: Final[str] = "zinemaker-settings.json"
PRINT_PIXELS_PER_MM: Final[int] = EXPORT_PIXELS_PER_MM
EXPORT_IMAGE_QUALITY: Final[int] = 95
