# Raw YOLO tensor -> detections (letterbox, decode, NMS)

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import cv2
import numpy as np

from bottlecount.data_types import BoundingBox, Detection


@dataclass(frozen=True)
class Letterbox:
    """
    Uniform scale + offset used to fit a source frame into the square
    inference canvas. Needed to map model boxes back to the source frame.
    """
    scale: float
    pad_x: int  # whole pixels: the image is pasted at exactly this offset
    pad_y: int
    size: int

    @classmethod
    def fit(cls, width: int, height: int, size: int) -> "Letterbox":
        scale = min(size / width, size / height)
        new_w = round(width * scale)
        new_h = round(height * scale)
        return cls(
            scale=scale,
            pad_x=(size - new_w) // 2,
            pad_y=(size - new_h) // 2,
            size=size,
        )

    def to_source(self, corners: np.ndarray) -> np.ndarray:
        """
        corners: (N, 4) x1, y1, x2, y2 in canvas pixels.
        Returns the same boxes in source-frame pixels.
        """
        out = corners.astype(np.float64, copy=True)
        out[:, [0, 2]] = (out[:, [0, 2]] - self.pad_x) / self.scale
        out[:, [1, 3]] = (out[:, [1, 3]] - self.pad_y) / self.scale
        return out


def letterbox(image: np.ndarray, size: int) -> Tuple[np.ndarray, Letterbox]:
    """
    Resize image into a size x size black canvas, keeping its aspect ratio.
    """
    h, w = image.shape[:2]
    lb = Letterbox.fit(w, h, size)
    new_w = round(w * lb.scale)
    new_h = round(h * lb.scale)

    resized = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)
    if resized.ndim == 2:
        resized = cv2.cvtColor(resized, cv2.COLOR_GRAY2BGR)

    canvas = np.zeros((size, size, 3), dtype=np.uint8)
    canvas[lb.pad_y:lb.pad_y + new_h, lb.pad_x:lb.pad_x + new_w] = resized
    return canvas, lb


def box_iou_matrix(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    """
    IoU of one xyxy box against an (N, 4) array of xyxy boxes.
    """
    x1 = np.maximum(box[0], others[:, 0])
    y1 = np.maximum(box[1], others[:, 1])
    x2 = np.minimum(box[2], others[:, 2])
    y2 = np.minimum(box[3], others[:, 3])

    inter = np.clip(x2 - x1, 0, None) * np.clip(y2 - y1, 0, None)
    area_a = max(0.0, box[2] - box[0]) * max(0.0, box[3] - box[1])
    area_b = np.clip(others[:, 2] - others[:, 0], 0, None) * np.clip(others[:, 3] - others[:, 1], 0, None)
    union = area_a + area_b - inter

    with np.errstate(divide="ignore", invalid="ignore"):
        result = np.where(union > 0, inter / union, 0.0)
    return result


def non_max_suppression(boxes: np.ndarray, scores: np.ndarray, iou_threshold: float) -> List[int]:
    """
    Greedy NMS over xyxy boxes.

    Candidates are visited by descending score (ties: lower original index
    first). Each kept box removes every remaining box whose IoU with it
    exceeds iou_threshold. Returns kept indices in visiting order.
    """
    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if len(scores) == 0:
        return []

    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []

    while order.size > 0:
        best = int(order[0])
        keep.append(best)
        rest = order[1:]
        if rest.size == 0:
            break
        overlaps = box_iou_matrix(boxes[best], boxes[rest])
        order = rest[overlaps <= iou_threshold]

    return keep


def decode_output(
    output: np.ndarray,
    lb: Letterbox,
    class_names: Sequence[str],
    conf_threshold: float,
    iou_threshold: float,
) -> List[Detection]:
    """
    Parse a YOLOv8 detection head into source-frame detections.

    output layout: [1, 4 + num_classes, num_boxes] (batch dim optional),
    rows = cx, cy, w, h, then one score per class, in canvas pixels.
    """
    data = np.asarray(output, dtype=np.float32)
    if data.ndim == 3:
        data = data[0]
    if data.ndim != 2 or data.shape[0] < 5:
        raise ValueError(f"unexpected detector output shape {np.shape(output)}")

    class_scores = data[4:]
    class_ids = np.argmax(class_scores, axis=0)
    best_scores = class_scores[class_ids, np.arange(class_scores.shape[1])]

    # 1) drop candidates below the confidence threshold
    mask = best_scores >= conf_threshold
    if not np.any(mask):
        return []

    cx, cy, w, h = data[0, mask], data[1, mask], data[2, mask], data[3, mask]
    scores = best_scores[mask]
    class_ids = class_ids[mask]

    # 2) center/size -> corners, 3) undo the letterbox
    corners = np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)
    corners = lb.to_source(corners)

    # 4) remove overlapping duplicates
    keep = non_max_suppression(corners, scores, iou_threshold)

    detections: List[Detection] = []
    for i in keep:
        cls_id = int(class_ids[i])
        name = class_names[cls_id] if cls_id < len(class_names) else f"class_{cls_id}"
        detections.append(
            Detection(
                box=BoundingBox.from_xyxy(*corners[i]),
                score=float(scores[i]),
                class_name=name,
            )
        )
    return detections
