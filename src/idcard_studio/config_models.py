"""
This module defines Pydantic models for validating and structuring configuration data
used throughout the ID card studio.

These models ensure that configuration files (like `studio_config.json`) adhere to a
defined schema, providing robustness and type safety.
"""

import json
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import (
    DEFAULT_BG,
    DEFAULT_GAP_MM,
    DEFAULT_GRID,
    DEFAULT_MARGIN_MM,
    DEFAULT_MARKER_DICT,
    DEFAULT_MARKER_IDS,
    DEFAULT_MIN_MARKER_AREA,
    DEFAULT_PX_PER_MM,
    CR80_SIZE_MM,
)


class DetectorConfig(BaseModel):
    """
    Tuning for the marker detection pipeline.

    Attributes:
        dictionary (str): OpenCV predefined dictionary name, e.g. "DICT_5X5_250".
        adaptive_windows (List[int]): Window sizes for the adaptive threshold passes.
            An Otsu pass always runs first.
        adaptive_constant (float): Constant subtracted from the local mean.
        min_perimeter_px (float): Smallest quad perimeter considered a candidate.
        polygon_accuracy (float): Approximation tolerance relative to the contour perimeter.
        max_correction_bits (int): Payload bits that may be wrong and still decode.
        border_error_rate (float): Fraction of border cells allowed to read white.
        cell_sample_px (int): Resolution of each cell in the unwarped marker.
        pad_px (int): White padding added around the image before processing.
        min_area (float): Minimum bounding-box area (px^2) kept for corner assignment.
    """
    dictionary: str = DEFAULT_MARKER_DICT
    adaptive_windows: List[int] = Field(default_factory=lambda: [15, 35, 55])
    adaptive_constant: float = 7.0
    min_perimeter_px: float = 40.0
    polygon_accuracy: float = 0.05
    max_correction_bits: int = 1
    border_error_rate: float = 0.35
    cell_sample_px: int = 8
    pad_px: int = 16
    min_area: float = DEFAULT_MIN_MARKER_AREA

    @field_validator("adaptive_windows")
    @classmethod
    def _odd_windows(cls, value: List[int]) -> List[int]:
        fixed = []
        for w in value:
            w = max(3, int(w))
            fixed.append(w if w % 2 == 1 else w + 1)
        return fixed


class RenderConfig(BaseModel):
    """Options for the data-binding renderer."""
    embed_images: bool = False
    embed_long_edge_px: int = Field(default=600, gt=0)
    barcode_dpi: int = Field(default=300, gt=0)


class SheetLayoutConfig(BaseModel):
    model_config = ConfigDict(extra='allow')

    """
    Physical description of a printed sheet and its N-up grid.
    """
    sheet_width_mm: float = Field(default=CR80_SIZE_MM[0], gt=0)
    sheet_height_mm: float = Field(default=54.0, gt=0)
    columns: int = Field(default=DEFAULT_GRID[0], ge=1)
    rows: int = Field(default=DEFAULT_GRID[1], ge=1)
    gap_mm: float = Field(default=DEFAULT_GAP_MM, ge=0)
    margin_mm: float = Field(default=DEFAULT_MARGIN_MM, ge=0)
    px_per_mm: float = Field(default=DEFAULT_PX_PER_MM, gt=0)
    use_markers: bool = True
    marker_ids: Tuple[int, int, int, int] = DEFAULT_MARKER_IDS
    background: Tuple[int, int, int] = DEFAULT_BG
    colors: List[str] = Field(default_factory=list)


class StudioConfig(BaseModel):
    model_config = ConfigDict(extra='allow')

    """
    Top-level configuration file.
    """
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    sheet: SheetLayoutConfig = Field(default_factory=SheetLayoutConfig)
    available_fonts: Optional[List[str]] = None


def load_config(path: Optional[Union[str, Path]] = None) -> StudioConfig:
    """
    Load a StudioConfig from a JSON file. Missing file path returns defaults.

    Raises:
        FileNotFoundError: If `path` is given but does not exist.
        pydantic.ValidationError: If the file does not match the schema.
    """
    if path is None:
        return StudioConfig()
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return StudioConfig.model_validate(data)
