"""
This module checks how well a printed sheet matches its layout.

A photograph of the printed sheet is searched for the four corner markers.
Their 16 corners are mapped to the positions the layout placed them at (in
millimetres) with a homography, and the residuals of that fit are reported
as registration error in millimetres.

This is a verification tool; nothing in the normal render path depends on it.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from ..config_models import DetectorConfig, SheetLayoutConfig
from ..layout.grid import compute_grid
from ..layout.sheet import marker_cells, marker_rects_px, sheet_size_px
from ..markers.detector import MarkerDetection, MarkerDetector, assign_corners, corners_by_identity

logger = logging.getLogger(__name__)


@dataclass
class MarkerResidual:
    identity: int
    corner: str
    mean_error_mm: float
    center_error_mm: float


@dataclass
class RegistrationReport:
    """
    Outcome of a registration check.

    Attributes:
        complete (bool): All four corner markers were found.
        method (str): "identity" when matched by expected id, "position" when
            classified by location, "" when incomplete.
        homography (Optional[np.ndarray]): 3x3 map from image pixels to sheet mm.
        rms_error_mm (Optional[float]): RMS residual over all 16 marker corners.
    """
    complete: bool
    method: str = ""
    detected_ids: List[int] = field(default_factory=list)
    missing_ids: List[int] = field(default_factory=list)
    markers: List[MarkerResidual] = field(default_factory=list)
    homography: Optional[np.ndarray] = None
    rms_error_mm: Optional[float] = None
    max_error_mm: Optional[float] = None

    def passed(self, tolerance_mm: float) -> bool:
        return self.complete and self.max_error_mm is not None and self.max_error_mm <= tolerance_mm

    def to_dict(self) -> dict:
        return {
            "complete": self.complete,
            "method": self.method,
            "detected_ids": self.detected_ids,
            "missing_ids": self.missing_ids,
            "rms_error_mm": self.rms_error_mm,
            "max_error_mm": self.max_error_mm,
            "markers": [m.__dict__ for m in self.markers],
        }


CORNER_NAMES = ("top_left", "top_right", "bottom_left", "bottom_right")


def expected_marker_corners_mm(sheet: SheetLayoutConfig) -> Dict[int, np.ndarray]:
    """
    Where the layout prints each marker's TL, TR, BR, BL corners, in mm.
    """
    grid = compute_grid(sheet.sheet_width_mm, sheet.sheet_height_mm, sheet.columns, sheet.rows, sheet.gap_mm, sheet.margin_mm)
    width_px, height_px = sheet_size_px((sheet.sheet_width_mm, sheet.sheet_height_mm), sheet.px_per_mm)
    rects = marker_rects_px(grid, marker_cells(grid, sheet.marker_ids), sheet.px_per_mm, width_px, height_px)
    expected = {}
    for identity, (x0, y0, x1, y1) in rects.items():
        square = np.float32([[x0, y0], [x1, y0], [x1, y1], [x0, y1]])
        expected[identity] = square / np.float32(sheet.px_per_mm)
    return expected


def match_corner_markers(detections: List[MarkerDetection], marker_ids, min_area: float) -> Tuple[Dict[int, MarkerDetection], str]:
    """
    Pair detections with expected marker ids.

    Expected ids are used when all four are present; otherwise the detections
    are classified by position and labelled with the id printed at that corner.
    """
    by_id = corners_by_identity(detections, marker_ids)
    if len(by_id) == 4:
        return by_id, "identity"

    assignment = assign_corners(detections, min_area)
    if not assignment.is_complete():
        return by_id, ""
    picked = assignment.as_list()
    if len({id(d) for d in picked}) < 4:
        # fewer than four separate markers: one detection won several corners
        return by_id, ""
    logger.warning("Expected marker ids %s not all found; matching corners by position.", list(marker_ids))
    return dict(zip(marker_ids, picked)), "position"


def fit_registration(matched: Dict[int, MarkerDetection], expected: Dict[int, np.ndarray], marker_ids) -> RegistrationReport:
    ids = list(marker_ids)
    src = np.concatenate([matched[i].corners for i in ids]).astype(np.float32)
    dst = np.concatenate([expected[i] for i in ids]).astype(np.float32)

    # least squares over all points; every residual counts towards the error
    h, _ = cv2.findHomography(src, dst, 0)
    if h is None:
        logger.error("Homography calculation failed.")
        return RegistrationReport(complete=False, detected_ids=ids)

    projected = cv2.perspectiveTransform(src.reshape(-1, 1, 2), h).reshape(-1, 2)
    errors = np.linalg.norm(projected - dst, axis=1)

    residuals = []
    for k, identity in enumerate(ids):
        block = slice(4 * k, 4 * k + 4)
        center_error = float(np.linalg.norm(projected[block].mean(axis=0) - dst[block].mean(axis=0)))
        residuals.append(MarkerResidual(identity, CORNER_NAMES[k], float(errors[block].mean()), center_error))

    return RegistrationReport(
        complete=True,
        detected_ids=ids,
        markers=residuals,
        homography=h,
        rms_error_mm=float(np.sqrt(np.mean(errors ** 2))),
        max_error_mm=float(errors.max()),
    )


def check_registration(
    image: np.ndarray,
    sheet: Optional[SheetLayoutConfig] = None,
    detector_config: Optional[DetectorConfig] = None,
    debug_mode: bool = False,
    output_dir: Optional[str] = None,
) -> RegistrationReport:
    """
    Detect the corner markers in a photograph of a printed sheet and report
    the millimetre registration error of the best perspective fit.

    A photograph without all four corner markers gives an incomplete report,
    not an exception.
    """
    sheet = sheet or SheetLayoutConfig()
    detector_config = detector_config or DetectorConfig()
    detections = MarkerDetector(detector_config, debug_mode=debug_mode, output_dir=output_dir).detect(image)
    matched, method = match_corner_markers(detections, sheet.marker_ids, detector_config.min_area)

    if not method:
        missing = [i for i in sheet.marker_ids if i not in matched]
        logger.warning("Registration incomplete: missing marker ids %s", missing)
        return RegistrationReport(complete=False, detected_ids=sorted(d.identity for d in detections), missing_ids=missing)

    report = fit_registration(matched, expected_marker_corners_mm(sheet), sheet.marker_ids)
    report.method = method if report.complete else ""
    logger.info("Registration (%s): RMS %.3f mm, max %.3f mm", method, report.rms_error_mm or 0.0, report.max_error_mm or 0.0)
    return report


def rectify(image: np.ndarray, report: RegistrationReport, sheet: SheetLayoutConfig) -> np.ndarray:
    """
    Warp the photograph onto the sheet's own pixel grid using the fitted homography.

    Raises:
        ValueError: If the report has no homography.
    """
    if report.homography is None:
        raise ValueError("Registration did not produce a homography.")
    scale = np.diag([sheet.px_per_mm, sheet.px_per_mm, 1.0])
    size = sheet_size_px((sheet.sheet_width_mm, sheet.sheet_height_mm), sheet.px_per_mm)
    return cv2.warpPerspective(image, scale @ report.homography, size)
