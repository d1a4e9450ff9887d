# Count zone gating: only detections centered in the middle of the frame count

from typing import Iterable, List

from bottlecount.config import ZoneConfig
from bottlecount.data_types import Detection


def zone_bounds(frame_width: int, frame_height: int, zone: ZoneConfig):
    """
    Pixel bounds (left, top, right, bottom) of the count zone.
    """
    return (
        frame_width * zone.left,
        frame_height * zone.top,
        frame_width * (1.0 - zone.right),
        frame_height * (1.0 - zone.bottom),
    )


def in_count_zone(detection: Detection, frame_width: int, frame_height: int, zone: ZoneConfig) -> bool:
    """
    True if the detection's box center lies inside the zone (edges included).
    """
    left, top, right, bottom = zone_bounds(frame_width, frame_height, zone)
    cx, cy = detection.box.center
    return left <= cx <= right and top <= cy <= bottom


def filter_to_zone(
    detections: Iterable[Detection],
    frame_width: int,
    frame_height: int,
    zone: ZoneConfig,
) -> List[Detection]:
    return [d for d in detections if in_count_zone(d, frame_width, frame_height, zone)]
