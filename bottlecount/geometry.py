# Box overlap and distance helpers shared by the tracker and the suppressor

import math

from bottlecount.data_types import BoundingBox


def iou(box_a: BoundingBox, box_b: BoundingBox) -> float:
    """
    Compute Intersection over Union of two (x, y, w, h) boxes.
    """
    x1 = max(box_a.x, box_b.x)
    y1 = max(box_a.y, box_b.y)
    x2 = min(box_a.x2, box_b.x2)
    y2 = min(box_a.y2, box_b.y2)

    inter_w = max(0.0, x2 - x1)
    inter_h = max(0.0, y2 - y1)
    inter_area = inter_w * inter_h

    if inter_area <= 0.0:
        return 0.0

    union = box_a.area + box_b.area - inter_area
    if union <= 0.0:
        return 0.0

    return float(inter_area / union)


def centroid_distance(box_a: BoundingBox, box_b: BoundingBox) -> float:
    """
    Euclidean distance between the centers of two boxes.
    """
    ax, ay = box_a.center
    bx, by = box_b.center
    return math.hypot(ax - bx, ay - by)
