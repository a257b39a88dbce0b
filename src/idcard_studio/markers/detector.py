"""
This module finds ArUco markers in rasters, from clean synthetic renders up to
photographs of printed sheets taken at an angle.

Detection is a chain of small pure stages so each one can be exercised on its own:

    pad -> binarize -> find quads -> unwarp -> sample cells -> read payload
        -> dictionary lookup -> refine corners -> de-duplicate

Nothing found is not an error: `detect` returns an empty list.
"""

import asyncio
import functools
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..config_models import DetectorConfig
from .aruco_utils import marker_bits, rotation_table

logger = logging.getLogger(__name__)


@dataclass
class MarkerDetection:
    """A decoded marker. Corners are TL, TR, BR, BL in the marker's own orientation."""
    identity: int
    corners: np.ndarray
    rotation: int = 0
    hamming: int = 0

    @property
    def center(self) -> Tuple[float, float]:
        c = self.corners.mean(axis=0)
        return float(c[0]), float(c[1])

    @property
    def bbox_area(self) -> float:
        span = self.corners.max(axis=0) - self.corners.min(axis=0)
        return float(span[0] * span[1])

    @property
    def side_px(self) -> float:
        edges = np.roll(self.corners, -1, axis=0) - self.corners
        return float(np.linalg.norm(edges, axis=1).mean())


@dataclass
class CornerAssignment:
    top_left: Optional[MarkerDetection] = None
    top_right: Optional[MarkerDetection] = None
    bottom_left: Optional[MarkerDetection] = None
    bottom_right: Optional[MarkerDetection] = None
    discarded: List[MarkerDetection] = field(default_factory=list)

    def as_list(self) -> List[Optional[MarkerDetection]]:
        return [self.top_left, self.top_right, self.bottom_left, self.bottom_right]

    def is_complete(self) -> bool:
        return all(d is not None for d in self.as_list())


# ==============================================================================
# Pipeline stages
# ==============================================================================


def to_gray(image: np.ndarray) -> np.ndarray:
    """Convert a BGR, BGRA or single-channel raster to uint8 grayscale."""
    img = np.asarray(image)
    if img.dtype != np.uint8:
        img = np.clip(img, 0, 255).astype(np.uint8)
    if img.ndim == 2:
        return img
    if img.shape[2] == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2GRAY)
    if img.shape[2] == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    return img[:, :, 0]


def pad_image(gray: np.ndarray, pad_px: int) -> np.ndarray:
    """Surround the raster with white so markers touching the edge keep a closed outline."""
    if pad_px <= 0:
        return gray
    return cv2.copyMakeBorder(gray, pad_px, pad_px, pad_px, pad_px, cv2.BORDER_CONSTANT, value=255)


def binarize(gray: np.ndarray, config: DetectorConfig) -> List[np.ndarray]:
    """
    Produce foreground masks (dark = 255). A global Otsu pass handles clean
    renders; adaptive passes handle uneven lighting in photographs.
    """
    _, otsu = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
    masks = [otsu]
    for window in config.adaptive_windows:
        masks.append(
            cv2.adaptiveThreshold(
                gray, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY_INV,
                window, config.adaptive_constant,
            )
        )
    return masks


def order_corners(points: np.ndarray) -> np.ndarray:
    """Sort four points clockwise (image coordinates), starting nearest the top-left."""
    pts = np.asarray(points, dtype=np.float32).reshape(4, 2)
    center = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - center[1], pts[:, 0] - center[0])
    pts = pts[np.argsort(angles)]
    start = int(np.argmin(pts.sum(axis=1)))
    return np.roll(pts, -start, axis=0)


def find_quads(mask: np.ndarray, config: DetectorConfig) -> List[np.ndarray]:
    """Convex four-sided contours large enough to hold a legible marker."""
    contours = cv2.findContours(mask, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)[-2]
    quads = []
    for contour in contours:
        perimeter = cv2.arcLength(contour, True)
        if perimeter < config.min_perimeter_px:
            continue
        approx = cv2.approxPolyDP(contour, config.polygon_accuracy * perimeter, True)
        if len(approx) != 4 or not cv2.isContourConvex(approx):
            continue
        quad = order_corners(approx)
        edges = np.linalg.norm(np.roll(quad, -1, axis=0) - quad, axis=1)
        if edges.min() < config.min_perimeter_px / 8 or edges.max() > 4 * edges.min():
            continue
        quads.append(quad)
    return quads


def unwarp(gray: np.ndarray, quad: np.ndarray, cells: int, cell_px: int) -> np.ndarray:
    """Perspective-correct the quad into a square of `cells` x `cells` cells."""
    side = cells * cell_px
    dst = np.array([[0, 0], [side - 1, 0], [side - 1, side - 1], [0, side - 1]], dtype=np.float32)
    matrix = cv2.getPerspectiveTransform(quad.astype(np.float32), dst)
    return cv2.warpPerspective(gray, matrix, (side, side), flags=cv2.INTER_LINEAR)


def sample_cells(warped: np.ndarray, cells: int, cell_px: int) -> np.ndarray:
    """Read each cell as 1 (white) or 0 (black) from the middle half of the cell."""
    _, binary = cv2.threshold(warped, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    lo, hi = cell_px // 4, cell_px - cell_px // 4
    bits = np.zeros((cells, cells), dtype=np.uint8)
    for r in range(cells):
        for c in range(cells):
            patch = binary[r * cell_px + lo:r * cell_px + hi, c * cell_px + lo:c * cell_px + hi]
            bits[r, c] = 1 if patch.mean() >= 127.5 else 0
    return bits


def read_payload(bits: np.ndarray, config: DetectorConfig) -> Optional[np.ndarray]:
    """Strip the border ring, or return None when the ring is not black enough."""
    ring = np.concatenate([bits[0, :], bits[-1, :], bits[1:-1, 0], bits[1:-1, -1]])
    if ring.sum() > config.border_error_rate * ring.size:
        return None
    payload = bits[1:-1, 1:-1]
    if payload.all() or not payload.any():
        return None
    return payload


def lookup(payload: np.ndarray, dict_name: str, max_correction_bits: int) -> Optional[Tuple[int, int, int]]:
    """
    Find the identity closest to `payload` over all four rotations.

    Returns (identity, rotation, hamming) or None when nothing is close enough
    or two different identities are equally close.
    """
    table = rotation_table(dict_name)
    distances = np.count_nonzero(table != payload.reshape(-1).astype(np.uint8), axis=2)
    best = int(distances.min())
    if best > max_correction_bits:
        return None
    hits = np.argwhere(distances == best)
    if len(np.unique(hits[:, 1])) > 1:
        return None
    rotation, identity = int(hits[0][0]), int(hits[0][1])
    return identity, rotation, best


def refine_corners(gray: np.ndarray, corners: np.ndarray, cells: int) -> np.ndarray:
    """Sub-pixel refinement; points that drift further than the search window are kept as-is."""
    edges = np.linalg.norm(np.roll(corners, -1, axis=0) - corners, axis=1)
    win = int(max(2, min(5, edges.min() / (cells * 2))))
    refined = corners.reshape(-1, 1, 2).astype(np.float32).copy()
    criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 0.001)
    cv2.cornerSubPix(gray, refined, (win, win), (-1, -1), criteria)
    refined = refined.reshape(4, 2)
    drift = np.linalg.norm(refined - corners, axis=1)
    return np.where((drift <= win)[:, None], refined, corners).astype(np.float32)


def deduplicate(detections: Sequence[MarkerDetection]) -> List[MarkerDetection]:
    """Collapse repeated hits of the same marker from different threshold passes."""
    kept: List[MarkerDetection] = []
    for det in detections:
        cx, cy = det.center
        duplicate = False
        for other in kept:
            ox, oy = other.center
            if other.identity == det.identity and np.hypot(cx - ox, cy - oy) < 0.25 * other.side_px:
                duplicate = True
                break
        if not duplicate:
            kept.append(det)
    return kept


def scan_order(detections: Sequence[MarkerDetection]) -> List[MarkerDetection]:
    """Order detections top-to-bottom, left-to-right by center."""
    return sorted(detections, key=lambda d: (round(d.center[1]), d.center[0]))


# ==============================================================================
# Detector
# ==============================================================================


class MarkerDetector:
    """Detects and decodes ArUco markers using the staged pipeline above."""

    def __init__(self, config: Optional[DetectorConfig] = None, debug_mode: bool = False, output_dir: Optional[str] = None):
        self.config = config or DetectorConfig()
        self.cells = marker_bits(self.config.dictionary) + 2
        self.debug_mode = debug_mode
        self.output_dir = output_dir
        if self.debug_mode and self.output_dir:
            os.makedirs(self.output_dir, exist_ok=True)

    def _save_debug_image(self, name: str, image: np.ndarray):
        if self.debug_mode and self.output_dir:
            cv2.imwrite(os.path.join(self.output_dir, f"debug_{name}.png"), image)

    def decode_quad(self, gray: np.ndarray, quad: np.ndarray) -> Optional[MarkerDetection]:
        cfg = self.config
        warped = unwarp(gray, quad, self.cells, cfg.cell_sample_px)
        payload = read_payload(sample_cells(warped, self.cells, cfg.cell_sample_px), cfg)
        if payload is None:
            return None
        found = lookup(payload, cfg.dictionary, cfg.max_correction_bits)
        if found is None:
            return None
        identity, rotation, hamming = found
        corners = np.roll(quad, -rotation, axis=0)
        corners = refine_corners(gray, corners, self.cells)
        return MarkerDetection(identity=identity, corners=corners, rotation=rotation, hamming=hamming)

    def detect(self, image: np.ndarray) -> List[MarkerDetection]:
        pad = self.config.pad_px
        gray = pad_image(to_gray(image), pad)
        detections = []
        for i, mask in enumerate(binarize(gray, self.config)):
            self._save_debug_image(f"mask_{i}", mask)
            for quad in find_quads(mask, self.config):
                det = self.decode_quad(gray, quad)
                if det is not None:
                    detections.append(det)

        detections = deduplicate(detections)
        for det in detections:
            det.corners = det.corners - np.float32(pad)

        if self.debug_mode:
            canvas = cv2.cvtColor(to_gray(image), cv2.COLOR_GRAY2BGR)
            for det in detections:
                pts = det.corners.reshape(-1, 1, 2).astype(np.int32)
                cv2.polylines(canvas, [pts], True, (0, 255, 0), 2)
                cx, cy = det.center
                cv2.putText(canvas, str(det.identity), (int(cx), int(cy)), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 255), 2)
            self._save_debug_image("detections", canvas)
            logger.debug("Detected marker ids: %s", [d.identity for d in detections])

        return scan_order(detections)


def detect(image: np.ndarray, config: Optional[DetectorConfig] = None) -> List[MarkerDetection]:
    """Detect markers with a throwaway MarkerDetector."""
    return MarkerDetector(config).detect(image)


async def detect_async(image: np.ndarray, config: Optional[DetectorConfig] = None, executor=None) -> List[MarkerDetection]:
    """Run `detect` in an executor so callers on the event loop are not blocked."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, functools.partial(detect, image, config))


def assign_corners(detections: Sequence[MarkerDetection], min_area: float) -> CornerAssignment:
    """
    Classify detections into the four corners of a layout by position.

    Detections whose bounding box is smaller than `min_area` are dropped first.
    Ties go to the first detection in scan order.
    """
    kept = [d for d in detections if d.bbox_area >= min_area]
    discarded = [d for d in detections if d.bbox_area < min_area]
    if discarded:
        logger.debug("Filtering out %d small marker(s): %s", len(discarded), [d.identity for d in discarded])
    if not kept:
        return CornerAssignment(discarded=discarded)

    def x(d):
        return d.center[0]

    def y(d):
        return d.center[1]

    return CornerAssignment(
        top_left=min(kept, key=lambda d: x(d) + y(d)),
        top_right=max(kept, key=lambda d: x(d) - y(d)),
        bottom_left=max(kept, key=lambda d: y(d) - x(d)),
        bottom_right=max(kept, key=lambda d: x(d) + y(d)),
        discarded=discarded,
    )


def corners_by_identity(detections: Sequence[MarkerDetection], expected_ids: Sequence[int]) -> Dict[int, MarkerDetection]:
    """First detection of each expected identity, keyed by identity."""
    found: Dict[int, MarkerDetection] = {}
    for det in detections:
        if det.identity in expected_ids and det.identity not in found:
            found[det.identity] = det
    return found
