# Detection source adapter: detector plugin -> filtered, canonical detections

import asyncio
import logging
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np

from bottlecount.config import DetectionConfig
from bottlecount.data_types import Detection, Frame, FrameDetections, RawPrediction
from bottlecount.detector import BaseDetector
from bottlecount.errors import DetectorInferenceFailure, InvalidFrame

logger = logging.getLogger(__name__)


class DetectionSource:
    """
    Wraps a detector plugin and turns its raw output into Detection records.

    Behavior:
      - Zero-area or malformed frames give an empty list; the plugin is not called.
      - A prediction survives only if its label is in the known vocabulary and
        its score is strictly above the threshold for that label (or the default).
      - One detector call at a time: while a call is still running (even past its
        timeout) new frames are dropped with a "busy" error instead of queued.
      - Plugin errors and timeouts never escape: they are logged, returned in
        FrameDetections.error, and the frame counts as "no detections".
    """

    def __init__(
        self,
        detector: BaseDetector,
        target_classes: Iterable[str],
        confidence_thresholds: Optional[Mapping[str, float]] = None,
        default_threshold: float = 0.35,
        display_names: Optional[Mapping[str, str]] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.detector = detector
        self.target_classes = frozenset(target_classes)
        self.confidence_thresholds: Dict[str, float] = dict(confidence_thresholds or {})
        self.default_threshold = default_threshold
        self.display_names: Dict[str, str] = dict(display_names or {})
        self.timeout_ms = timeout_ms

        self.last_error: Optional[Exception] = None
        self._in_flight: Optional[asyncio.Future] = None

    @classmethod
    def from_config(cls, detector: BaseDetector, config: DetectionConfig) -> "DetectionSource":
        return cls(
            detector,
            target_classes=config.target_classes,
            confidence_thresholds=config.confidence_thresholds,
            default_threshold=config.default_confidence_threshold,
            display_names=config.display_names,
            timeout_ms=config.timeout_ms,
        )

    @property
    def busy(self) -> bool:
        """True while an earlier detector call (possibly timed out) is still running."""
        return self._in_flight is not None and not self._in_flight.done()

    def threshold_for(self, label: str) -> float:
        return self.confidence_thresholds.get(label, self.default_threshold)

    def accepts(self, prediction: RawPrediction) -> bool:
        if prediction.label not in self.target_classes:
            return False
        return prediction.score > self.threshold_for(prediction.label)

    def filter(self, predictions: Iterable[RawPrediction]) -> List[Detection]:
        return [
            Detection(
                box=p.box,
                score=float(p.score),
                class_name=p.label,
                display_name=self.display_names.get(p.label, p.label),
            )
            for p in predictions
            if self.accepts(p)
        ]

    async def detect(self, frame: Frame) -> FrameDetections:
        """
        Run the plugin on one frame and return filtered detections.
        """
        try:
            _check_frame(frame)
        except InvalidFrame as exc:
            logger.debug("Frame %d skipped: %s", frame.frame_id, exc)
            return FrameDetections(frame_id=frame.frame_id, detections=[])

        if self.busy:
            failure = DetectorInferenceFailure(
                f"{self.detector.name} detector still busy with an earlier frame",
                frame_id=frame.frame_id,
            )
            logger.debug("Frame %d dropped: %s", frame.frame_id, failure)
            self.last_error = failure
            return FrameDetections(frame_id=frame.frame_id, detections=[], error=failure)

        try:
            predictions = await self._predict(frame.image)
        except asyncio.TimeoutError:
            return self._failed(
                frame,
                DetectorInferenceFailure(
                    f"{self.detector.name} detector timed out after {self.timeout_ms} ms",
                    frame_id=frame.frame_id,
                ),
            )
        except Exception as exc:
            failure = DetectorInferenceFailure(
                f"{self.detector.name} detector failed: {exc}",
                frame_id=frame.frame_id,
            )
            failure.__cause__ = exc
            return self._failed(frame, failure)

        self.last_error = None
        return FrameDetections(frame_id=frame.frame_id, detections=self.filter(predictions))

    async def _predict(self, image: np.ndarray) -> List[RawPrediction]:
        task = asyncio.ensure_future(self.detector.predict(image))
        self._in_flight = task
        task.add_done_callback(self._settled)
        if self.timeout_ms is None:
            return await task
        # a timed-out call stays in flight until its worker thread returns
        return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout_ms / 1000.0)

    def _settled(self, task: "asyncio.Future[List[RawPrediction]]") -> None:
        if self._in_flight is task:
            self._in_flight = None
        if not task.cancelled() and task.exception() is not None:
            logger.debug("%s detector call ended with %r", self.detector.name, task.exception())

    def _failed(self, frame: Frame, failure: DetectorInferenceFailure) -> FrameDetections:
        logger.warning("Frame %d: %s", frame.frame_id, failure)
        self.last_error = failure
        return FrameDetections(frame_id=frame.frame_id, detections=[], error=failure)


def _check_frame(frame: Frame) -> None:
    image = frame.image
    if not isinstance(image, np.ndarray) or image.ndim not in (2, 3):
        raise InvalidFrame(f"expected an (H, W) or (H, W, C) array, got {type(image).__name__}")
    if frame.is_empty:
        raise InvalidFrame("zero-area frame")
