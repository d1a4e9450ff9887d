import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List

import cv2
import numpy as np

from ultralytics import YOLO

from bottlecount.config import DetectionConfig
from bottlecount.data_types import BoundingBox, RawPrediction
from bottlecount.decoder import decode_output, letterbox
from bottlecount.errors import DetectorUnavailable

logger = logging.getLogger(__name__)


class BaseDetector(ABC):
    """
    Abstract interface for all detector plugins.
    """

    name: str = "base"

    @abstractmethod
    async def predict(self, image: np.ndarray) -> List[RawPrediction]:
        """
        Run detection on a single BGR frame.
        Returns raw predictions in source-frame pixels, unfiltered.
        """
        raise NotImplementedError


class DummyDetector(BaseDetector):
    """
    Placeholder detector.
    Returns no detections.
    Lets you build and test the pipeline before a model is available.
    """

    name = "dummy"

    async def predict(self, image: np.ndarray) -> List[RawPrediction]:
        return []


class YoloDetector(BaseDetector):
    """
    YOLOv8-based detector using the ultralytics package.
    Emits ready-made boxes; NMS happens inside ultralytics.
    """

    name = "yolo"

    def __init__(self, config: DetectionConfig, weights: str = None):
        self.config = config
        weights = weights or config.fallback_model

        try:
            # This will download yolov8n.pt on first use.
            self.model = YOLO(str(weights))
        except Exception as exc:
            raise DetectorUnavailable(f"could not load YOLO weights {weights}: {exc}") from exc

        # model.names may be dict or list; both support [] lookup
        self.class_names = self.model.names

    def _run(self, image: np.ndarray) -> List[RawPrediction]:
        results = self.model(
            image,
            conf=self.config.decode_confidence,
            iou=self.config.nms_iou_threshold,
            device=self.config.device,
            verbose=False,
        )[0]

        predictions: List[RawPrediction] = []
        if results.boxes is None:
            return predictions

        # Each box in results.boxes has xyxy, conf, cls
        for box in results.boxes:
            score = float(box.conf[0].item())
            class_id = int(box.cls[0].item())
            x1, y1, x2, y2 = box.xyxy[0].tolist()

            predictions.append(
                RawPrediction(
                    label=str(self.class_names[class_id]),
                    score=score,
                    box=BoundingBox.from_xyxy(x1, y1, x2, y2),
                )
            )
        return predictions

    async def predict(self, image: np.ndarray) -> List[RawPrediction]:
        # inference is blocking; keep the event loop free
        return await asyncio.to_thread(self._run, image)


class OnnxDetector(BaseDetector):
    """
    Tensor-based detector: a YOLOv8 ONNX export run through OpenCV DNN.

    The network only sees a letterboxed input_size x input_size canvas,
    so its raw output is decoded and mapped back here.
    """

    name = "onnx"

    def __init__(self, config: DetectionConfig, model_path: Path = None):
        self.config = config
        self.model_path = Path(model_path or config.model_path)

        if not self.model_path.is_file():
            raise DetectorUnavailable(f"ONNX model not found: {self.model_path}")
        try:
            self.net = cv2.dnn.readNetFromONNX(str(self.model_path))
        except cv2.error as exc:
            raise DetectorUnavailable(f"could not load ONNX model {self.model_path}: {exc}") from exc

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        """
        tensor: float32 (1, 3, S, S), RGB, 0-1.
        Returns the raw head output, (1, 4 + num_classes, num_boxes).
        """
        self.net.setInput(tensor)
        return self.net.forward()

    def _run(self, image: np.ndarray) -> List[RawPrediction]:
        canvas, lb = letterbox(image, self.config.input_size)
        tensor = cv2.dnn.blobFromImage(canvas, scalefactor=1.0 / 255.0, swapRB=True)
        output = self.infer(tensor)

        detections = decode_output(
            output,
            lb,
            class_names=self.config.class_names,
            conf_threshold=self.config.decode_confidence,
            iou_threshold=self.config.nms_iou_threshold,
        )
        return [RawPrediction(label=d.class_name, score=d.score, box=d.box) for d in detections]

    async def predict(self, image: np.ndarray) -> List[RawPrediction]:
        return await asyncio.to_thread(self._run, image)


def build_detector(config: DetectionConfig) -> BaseDetector:
    """
    Behavior:
      - If a custom ONNX model exists at DetectionConfig.model_path, use it.
      - Otherwise, fall back to pretrained ultralytics weights (COCO classes).
    Raises DetectorUnavailable when neither can be loaded.
    """
    model_path = Path(config.model_path)

    if model_path.is_file():
        try:
            detector = OnnxDetector(config, model_path)
            logger.info("Using custom ONNX detector %s", model_path)
            return detector
        except DetectorUnavailable as exc:
            logger.warning("Custom detector unusable, falling back: %s", exc)
    else:
        logger.info("No custom model at %s, using %s", model_path, config.fallback_model)

    return YoloDetector(config)
