"""
Facial landmark geometry for the liveness gates.

Works on the MediaPipe FaceMesh topology (468 keypoints, 478 with iris).
Coordinates are in frame-pixel space; ``z`` is optional depth on roughly
the same scale as ``x`` and is stored as NaN when the detector does not
provide it.

Left/right in the index table follow the viewer's perspective, so
``LEFT_EYE_*`` is the subject's anatomical right eye.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.spatial import distance as dist


class LandmarkIndex:
    """Fixed FaceMesh index positions the gates depend on."""

    NOSE_TIP = 1

    LEFT_EYE_OUTER = 33
    LEFT_EYE_INNER = 133
    # outer corner, upper outer, upper inner, inner corner, lower inner, lower outer
    LEFT_EYE_EAR = (33, 160, 158, 133, 153, 144)

    RIGHT_EYE_OUTER = 263
    RIGHT_EYE_INNER = 362
    RIGHT_EYE_EAR = (263, 387, 385, 362, 380, 373)

    LEFT_CHEEK = 234
    RIGHT_CHEEK = 454
    CHIN = 152
    FOREHEAD = 10

    MIN_KEYPOINTS = 455  # highest index used above, plus one


KeypointLike = Union[Sequence[float], dict]


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height


class FaceLandmarks:
    """
    One detected face: an ordered array of keypoints.

    Args:
        keypoints: Array-like of shape (N, 2) or (N, 3). Missing depth can
            be given as NaN or by passing only two columns.

    Raises:
        ValueError: If the array has the wrong shape or fewer keypoints
            than the index table needs.
    """

    def __init__(self, keypoints: Union[np.ndarray, Sequence[Sequence[float]]]):
        points = np.asarray(keypoints, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] not in (2, 3):
            raise ValueError(f"Keypoints must have shape (N, 2) or (N, 3), got {points.shape}")
        if points.shape[0] < LandmarkIndex.MIN_KEYPOINTS:
            raise ValueError(
                f"Expected at least {LandmarkIndex.MIN_KEYPOINTS} keypoints, got {points.shape[0]}"
            )
        if points.shape[1] == 2:
            points = np.hstack([points, np.full((points.shape[0], 1), np.nan)])
        self.points = points

    @classmethod
    def from_keypoints(cls, keypoints: Iterable[KeypointLike]) -> "FaceLandmarks":
        """Build from detector records: ``{"x", "y", "z"?}`` dicts or tuples."""
        rows = []
        for kp in keypoints:
            if isinstance(kp, dict):
                z = kp.get("z")
                rows.append((kp["x"], kp["y"], np.nan if z is None else z))
            else:
                rows.append((kp[0], kp[1], kp[2] if len(kp) > 2 and kp[2] is not None else np.nan))
        return cls(rows)

    def __len__(self) -> int:
        return self.points.shape[0]

    @property
    def xy(self) -> np.ndarray:
        return self.points[:, :2]

    @property
    def depths(self) -> np.ndarray:
        """Depth values of the keypoints that carry one."""
        z = self.points[:, 2]
        return z[~np.isnan(z)]

    def point(self, index: int) -> np.ndarray:
        """(x, y, z) for one landmark; z is 0 when absent."""
        if 0 <= index < len(self):
            x, y, z = self.points[index]
            return np.array([x, y, 0.0 if np.isnan(z) else z])
        return np.zeros(3)


def bounding_box(face: FaceLandmarks) -> BoundingBox:
    """Min/max box over all keypoints."""
    xy = face.xy
    min_x, min_y = xy.min(axis=0)
    max_x, max_y = xy.max(axis=0)
    return BoundingBox(float(min_x), float(min_y), float(max_x - min_x), float(max_y - min_y))


def centroid(face: FaceLandmarks) -> Tuple[float, float]:
    """Mean keypoint position, steadier than the box center."""
    cx, cy = face.xy.mean(axis=0)
    return float(cx), float(cy)


def inter_ocular_distance(face: FaceLandmarks) -> float:
    """Distance between the two eye centers (corner midpoints)."""
    left = (face.point(LandmarkIndex.LEFT_EYE_INNER)[:2] + face.point(LandmarkIndex.LEFT_EYE_OUTER)[:2]) / 2
    right = (face.point(LandmarkIndex.RIGHT_EYE_INNER)[:2] + face.point(LandmarkIndex.RIGHT_EYE_OUTER)[:2]) / 2
    return float(dist.euclidean(left, right))


def is_inside_guide(face_box: BoundingBox, guide_box: BoundingBox, margin: float = 0.05) -> bool:
    """True if the face box lies in the guide box grown by ``margin`` on every side."""
    margin_x = guide_box.width * margin
    margin_y = guide_box.height * margin
    return (
        face_box.x >= guide_box.x - margin_x
        and face_box.y >= guide_box.y - margin_y
        and face_box.right <= guide_box.right + margin_x
        and face_box.bottom <= guide_box.bottom + margin_y
    )


def make_guide_box(
    frame_width: float,
    frame_height: float,
    width_ratio: float = 0.6,
    height_ratio: float = 0.7,
) -> Optional[BoundingBox]:
    """Centered guide region sized as a fraction of the frame."""
    if frame_width <= 0 or frame_height <= 0:
        return None
    width = frame_width * width_ratio
    height = frame_height * height_ratio
    return BoundingBox((frame_width - width) / 2, (frame_height - height) / 2, width, height)
