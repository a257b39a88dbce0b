"""
spare_ids.py

Searches a marker dictionary for identities that are as different as
possible from the ones already printed, so extra markers can be added to a
layout without being confused with the existing corners.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from ..config import DEFAULT_MARKER_DICT
from ..markers.aruco_utils import dictionary_size, encode, hamming_to_dictionary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpareId:
    identity: int
    min_distance: int


def find_spare_ids(used: Sequence[int], count: int = 4, dict_name: str = DEFAULT_MARKER_DICT) -> List[SpareId]:
    """
    Greedily pick `count` identities maximizing the smallest distance to
    everything used or already picked. Ties go to the lowest identity.

    Raises:
        UnknownIdentity: If a used identity is not in the dictionary.
    """
    size = dictionary_size(dict_name)
    rows = {i: hamming_to_dictionary(encode(i, dict_name), dict_name) for i in used}
    taken = set(used)
    picked: List[SpareId] = []
    # with nothing used yet, distance only counts against earlier picks
    nearest = np.full(size, np.iinfo(np.int32).max, dtype=np.int64)
    for row in rows.values():
        nearest = np.minimum(nearest, row)

    while len(picked) < count and len(taken) < size:
        scores = nearest.copy()
        scores[list(taken)] = -1
        best = int(np.argmax(scores))
        distance = int(nearest[best]) if rows or picked else 0
        picked.append(SpareId(best, distance))
        taken.add(best)
        nearest = np.minimum(nearest, hamming_to_dictionary(encode(best, dict_name), dict_name))
        logger.debug("Spare id %d (min distance %d)", best, distance)
    return picked
