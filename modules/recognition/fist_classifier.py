"""
Per-frame closed-fist classification from named hand keypoints.

A fist is modeled as the fingertips lying below (curled toward) the knuckle
line in image coordinates, where Y grows downward. The classification is
stateless: nothing is carried across frames.
"""

import logging
import numpy as np

from core.types import FistResult

logger = logging.getLogger(__name__)

DIGIT_COUNT = 5
FINGERTIP_TAG = "tip"
KNUCKLE_TAG = "mcp"


def partition_keypoints(hand):
    """Split a hand's keypoints into (fingertips, knuckles) by name.

    Raises:
        AttributeError / TypeError: on keypoints without a usable ``name``
    """
    keypoints = getattr(hand, "keypoints", hand)
    tips = [kp for kp in keypoints if FINGERTIP_TAG in kp.name]
    knuckles = [kp for kp in keypoints if KNUCKLE_TAG in kp.name]
    return tips, knuckles


def is_fist_closed(hand) -> FistResult:
    """Classify one hand observation as a closed fist or not.

    Args:
        hand: HandObservation, or any iterable of keypoints with x/y/name

    Returns:
        FistResult(True, (mean tip x, mean tip y)) when closed,
        FistResult(False, None) otherwise. A hand with a missing digit or a
        malformed keypoint is reported as not closed; nothing is raised.
    """
    try:
        tips, knuckles = partition_keypoints(hand)
        if len(tips) != DIGIT_COUNT or len(knuckles) != DIGIT_COUNT:
            return FistResult.open()

        tip_xy = np.array([(kp.x, kp.y) for kp in tips], dtype=np.float64)
        knuckle_y = np.array([kp.y for kp in knuckles], dtype=np.float64)
    except (AttributeError, TypeError, ValueError) as e:
        logger.debug("Malformed keypoints, treating hand as open: %s", e)
        return FistResult.open()

    avg_tip_y = float(tip_xy[:, 1].mean())
    avg_knuckle_y = float(knuckle_y.mean())

    if not np.isfinite(avg_tip_y) or not np.isfinite(avg_knuckle_y):
        return FistResult.open()

    if avg_tip_y > avg_knuckle_y:
        center_x = float(tip_xy[:, 0].mean())
        return FistResult(True, (center_x, avg_tip_y))

    return FistResult.open()
