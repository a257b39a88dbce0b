"""
config.py
Shared configuration constants and defaults.
"""

from pathlib import Path

# --- Project Root ---
ROOT_DIR = Path(__file__).resolve().parent.parent.parent
OUTPUT_DIR = ROOT_DIR / "output"
LOG_DIR = ROOT_DIR / "logs"

# --- Units ---
MM_PER_INCH = 25.4
POINTS_PER_INCH = 72
CSS_DPI = 96
PX_PER_MM_CSS = CSS_DPI / MM_PER_INCH  # user units per mm in designer documents
DEFAULT_PX_PER_MM = 10.0  # print raster resolution (254 dpi)

# --- Cards ---
DEFAULT_CARD_SIZE_MM = (86.0, 54.0)  # used when an imported SVG declares no size
CR80_SIZE_MM = (85.6, 53.98)

# --- Markers ---
DEFAULT_MARKER_DICT = "DICT_5X5_250"
DEFAULT_MARKER_IDS = (0, 1, 2, 3)  # top-left, top-right, bottom-left, bottom-right
MIN_LEGIBLE_CELL_PX = 14
DEFAULT_MIN_MARKER_AREA = 100.0  # px^2, filters line noise before corner assignment

# --- Calibration card grid ---
DEFAULT_GRID = (11, 7)
DEFAULT_GAP_MM = 0.5
DEFAULT_MARGIN_MM = 5.0
DEFAULT_BG = (255, 255, 255)

# --- Rendering ---
DEFAULT_FONT = "DejaVuSans.ttf"  # Pillow font for placeholder labels, falls back to PIL default
DEFAULT_FONT_SIZE = 16
LINE_HEIGHT_RATIO = 1.2
MIN_IMAGE_SCALE = 0.1
GENERATED_ATTR = "data-idcard-generated"

# --- Colour calibration ---
SWATCH_SAMPLE_RADIUS_PX = 5  # window is (2r+1)^2 pixels around the swatch centre
SWATCH_TRIM_FRACTION = 0.1  # darkest and brightest tenth are dropped
COLOR_MATCH_DISTANCE = 50.0  # RGB distance within which a profile colour applies
COLOR_PROFILE_VERSION = "1.0"
