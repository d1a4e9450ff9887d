# Core data structures (frames, boxes, detections, tracks, counts)

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np


# box coordinates
@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned bounding box in source-frame pixel coordinates.
    (x, y) = top-left corner, width/height >= 0
    """
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingBox":
        return cls(x=float(x1), y=float(y1), width=float(x2 - x1), height=float(y2 - y1))

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def to_xyxy(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.x2, self.y2)


@dataclass
class Frame:
    """
    One video frame as handed out by a frame source.
    image is an (H, W) or (H, W, 3) BGR uint8 array.
    """
    image: np.ndarray
    timestamp_ms: float
    frame_id: int = 0

    @property
    def height(self) -> int:
        if self.image is None or self.image.ndim < 2:
            return 0
        return int(self.image.shape[0])

    @property
    def width(self) -> int:
        if self.image is None or self.image.ndim < 2:
            return 0
        return int(self.image.shape[1])

    @property
    def is_empty(self) -> bool:
        # zero dimensions = "camera not ready yet"
        return self.width == 0 or self.height == 0


@dataclass(frozen=True)
class RawPrediction:
    """
    Single prediction as returned by a detector plugin, before filtering.
    """
    label: str
    score: float
    box: BoundingBox


@dataclass(frozen=True)
class Detection:
    """
    Single detection for one object in one frame, after filtering.
    """
    box: BoundingBox
    score: float
    class_name: str
    display_name: str = ""

    @property
    def label(self) -> str:
        return self.display_name or self.class_name


@dataclass
class FrameDetections:
    """
    All detections for a single frame.
    error is set when the detector failed and the list was emptied.
    """
    frame_id: int
    detections: List[Detection]
    error: Optional[Exception] = None


class TrackState(Enum):
    PROVISIONAL = "provisional"
    CONFIRMED = "confirmed"
    LOST = "lost"


@dataclass
class Track:
    """
    A tracked identity across frames.
    """
    track_id: int
    box: BoundingBox
    class_name: str
    score: float
    frames_observed: int = 1     # frames in which this identity had a match
    missed_frames: int = 0       # frames since the last match
    counted: bool = False        # has this identity already been counted
    lost: bool = False

    @property
    def state(self) -> TrackState:
        if self.lost:
            return TrackState.LOST
        if self.counted:
            return TrackState.CONFIRMED
        return TrackState.PROVISIONAL


@dataclass
class FrameTracks:
    """
    All live tracks for a single frame, plus what changed.
    count_delta = identities confirmed in this frame.
    lost = identities evicted in this frame.
    """
    frame_id: int
    tracks: List[Track]
    count_delta: int = 0
    lost: List[Track] = field(default_factory=list)


@dataclass
class CountingState:
    """
    Running totals held by the count sink.
    """
    total: int = 0
    session_total: int = 0
