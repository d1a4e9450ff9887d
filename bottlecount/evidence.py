import logging
from abc import ABC, abstractmethod
from typing import Optional

from bottlecount.config import PipelineConfig, ZoneConfig
from bottlecount.data_types import Frame, FrameDetections, FrameTracks
from bottlecount.detector import BaseDetector, build_detector
from bottlecount.source import DetectionSource
from bottlecount.tracker import IdentityTracker
from bottlecount.tripwire import TripwireSensor
from bottlecount.zone import filter_to_zone

logger = logging.getLogger(__name__)


class CountingEvidenceSource(ABC):
    """
    Abstract interface for anything that turns frames into count deltas.
    One instance per counting session.
    """

    name: str = "base"

    # minimum spacing between processed frames; 0 = every frame
    interval_ms: float = 0.0

    @abstractmethod
    async def process(self, frame: Frame) -> int:
        """
        Consume one frame, return the number of new items (>= 0).
        """
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        """
        Drop all per-session state.
        """
        raise NotImplementedError

    def close(self) -> None:
        pass


class DetectorEvidence(CountingEvidenceSource):
    """
    detector -> count zone -> identity tracker
    """

    name = "detector"

    def __init__(
        self,
        source: DetectionSource,
        tracker: IdentityTracker,
        zone: ZoneConfig,
        detection_fps: int = 15,
    ):
        self.source = source
        self.tracker = tracker
        self.zone = zone
        self.interval_ms = 1000.0 / detection_fps if detection_fps else 0.0

        self.last_detections: Optional[FrameDetections] = None
        self.last_tracks: Optional[FrameTracks] = None

    async def process(self, frame: Frame) -> int:
        frame_detections = await self.source.detect(frame)
        self.last_detections = frame_detections

        in_zone = filter_to_zone(frame_detections.detections, frame.width, frame.height, self.zone)
        frame_tracks = self.tracker.update(
            FrameDetections(frame_id=frame.frame_id, detections=in_zone, error=frame_detections.error)
        )
        self.last_tracks = frame_tracks
        return frame_tracks.count_delta

    def reset(self) -> None:
        self.tracker.reset()
        self.last_detections = None
        self.last_tracks = None


class TripwireEvidence(CountingEvidenceSource):
    """
    motion strip at a fixed line
    """

    name = "tripwire"

    def __init__(self, sensor: TripwireSensor, fps: int = 20):
        self.sensor = sensor
        self.interval_ms = 1000.0 / fps if fps else 0.0

    async def process(self, frame: Frame) -> int:
        return self.sensor.process(frame.image, frame.timestamp_ms)

    def reset(self) -> None:
        self.sensor.reset()

    def close(self) -> None:
        self.sensor.stop()


def build_evidence(config: PipelineConfig, detector: Optional[BaseDetector] = None) -> CountingEvidenceSource:
    """
    Pick the evidence source for a session from config.mode.
    detector is only needed (and only built) in detector mode.
    """
    if config.mode == "tripwire":
        logger.info("Counting with tripwire at y=%.2f", config.tripwire.line_y)
        return TripwireEvidence(TripwireSensor.from_config(config.tripwire), fps=config.tripwire.fps)

    if detector is None:
        detector = build_detector(config.detection)

    logger.info("Counting with %s detector at %d fps", detector.name, config.detection.detection_fps)
    return DetectorEvidence(
        DetectionSource.from_config(detector, config.detection),
        IdentityTracker.from_config(config.tracking),
        config.zone,
        detection_fps=config.detection.detection_fps,
    )
