"""
aruco_utils.py

Helpers to look up ArUco dictionaries, encode marker identities into bit
matrices and draw those matrices as strictly binary raster patches.
"""

from functools import lru_cache

import cv2
import numpy as np

from ..config import DEFAULT_MARKER_DICT
from ..errors import UnknownIdentity


@lru_cache(maxsize=None)
def get_dictionary(dict_name: str = DEFAULT_MARKER_DICT):
    """
    Return the OpenCV predefined dictionary called `dict_name`.
    """
    aruco_id = getattr(cv2.aruco, dict_name, None)
    if aruco_id is None or not dict_name.startswith("DICT_"):
        raise ValueError(f"Unknown ArUco dictionary: {dict_name}")
    if hasattr(cv2.aruco, "getPredefinedDictionary"):
        return cv2.aruco.getPredefinedDictionary(aruco_id)
    return cv2.aruco.Dictionary_get(aruco_id)


def dictionary_size(dict_name: str = DEFAULT_MARKER_DICT) -> int:
    return int(get_dictionary(dict_name).bytesList.shape[0])


def marker_bits(dict_name: str = DEFAULT_MARKER_DICT) -> int:
    """Side length N of the payload matrix."""
    return int(get_dictionary(dict_name).markerSize)


def encode(identity: int, dict_name: str = DEFAULT_MARKER_DICT) -> np.ndarray:
    """
    Look up the payload of `identity` as an N x N matrix (1 = white, 0 = black).

    Raises:
        UnknownIdentity: If the identity is not in the dictionary.
    """
    size = dictionary_size(dict_name)
    if not isinstance(identity, (int, np.integer)) or not 0 <= int(identity) < size:
        raise UnknownIdentity(identity, size)
    return _all_payloads(dict_name)[int(identity)].copy()


def render_marker(matrix: np.ndarray, cell_pixel_size: int) -> np.ndarray:
    """
    Draw a payload matrix with a one-cell black border.

    Every cell is exactly `cell_pixel_size` pixels square and every pixel is
    either 0 or 255, so the decoder can rely on binary fidelity.

    Returns:
        np.ndarray: (N + 2) * cell_pixel_size square, single channel uint8.
    """
    matrix = np.asarray(matrix)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ValueError("Marker matrix must be square.")
    cell = int(cell_pixel_size)
    if cell < 1:
        raise ValueError("cell_pixel_size must be at least 1.")
    n = matrix.shape[0]
    cells = np.zeros((n + 2, n + 2), dtype=np.uint8)
    cells[1:-1, 1:-1] = np.where(matrix > 0, 255, 0)
    return np.kron(cells, np.ones((cell, cell), dtype=np.uint8))


def render_marker_bgr(identity: int, side_px: int, dict_name: str = DEFAULT_MARKER_DICT) -> np.ndarray:
    """
    Render `identity` at an exact side length in pixels as a BGR patch.

    The marker is drawn at the largest whole cell size that fits and scaled to
    `side_px` with nearest-neighbour interpolation, keeping pixels binary.
    """
    matrix = encode(identity, dict_name)
    cells = matrix.shape[0] + 2
    cell_px = max(1, side_px // cells)
    patch = render_marker(matrix, cell_px)
    if patch.shape[0] != side_px:
        patch = cv2.resize(patch, (side_px, side_px), interpolation=cv2.INTER_NEAREST)
    return cv2.cvtColor(patch, cv2.COLOR_GRAY2BGR)


@lru_cache(maxsize=None)
def _all_payloads(dict_name: str) -> np.ndarray:
    """
    Payload matrices for every identity, shape (count, N, N).

    OpenCV draws one pixel per cell when the side equals N + 2 border cells.
    """
    dictionary = get_dictionary(dict_name)
    n = int(dictionary.markerSize)
    count = int(dictionary.bytesList.shape[0])
    payloads = np.zeros((count, n, n), dtype=np.uint8)
    for identity in range(count):
        tiny = cv2.aruco.generateImageMarker(dictionary, identity, n + 2, borderBits=1)
        payloads[identity] = (tiny[1:-1, 1:-1] > 127).astype(np.uint8)
    return payloads


@lru_cache(maxsize=None)
def rotation_table(dict_name: str = DEFAULT_MARKER_DICT) -> np.ndarray:
    """
    Flattened payloads for all four rotations, shape (4, count, N * N).

    Entry [k, i] is the payload of identity i as it reads after the marker has
    been turned by k quarter turns clockwise, i.e. np.rot90(observed, k) equals
    the canonical payload.
    """
    payloads = _all_payloads(dict_name)
    table = np.stack([np.rot90(payloads, -k, axes=(1, 2)) for k in range(4)])
    return table.reshape(4, payloads.shape[0], -1)


def hamming_to_dictionary(matrix: np.ndarray, dict_name: str = DEFAULT_MARKER_DICT) -> np.ndarray:
    """
    Smallest rotation-aware Hamming distance from `matrix` to each identity.
    """
    bits = np.asarray(matrix, dtype=np.uint8).reshape(-1)
    return np.count_nonzero(rotation_table(dict_name) != bits, axis=2).min(axis=0)
