import logging
from typing import Dict, List, Optional, Sequence, Set

from bottlecount.config import TrackingConfig
from bottlecount.data_types import Detection, FrameDetections, FrameTracks, Track
from bottlecount.geometry import centroid_distance, iou

logger = logging.getLogger(__name__)


class IdentityTracker:
    """
    IoU + centroid multi-object tracker that emits one count per identity.

    Logic, for every frame:
      - IoU pass: each live identity (ascending id) takes the unused detection
        with the highest IoU, if that IoU >= iou_threshold.
      - Centroid pass: identities still unmatched take the unused detection
        with the nearest center, if within max_centroid_dist pixels.
      - Unmatched identities age by one missed frame; identities with
        missed_frames > max_missed_frames are evicted.
      - Unused detections spawn new provisional identities.
      - Identities reaching min_frames_to_count are counted, once.

    Eviction never takes a count back. Ids are never reused until reset().
    Not thread-safe: call update() from a single task.
    """

    def __init__(
        self,
        iou_threshold: float = 0.3,
        max_missed_frames: int = 8,
        min_frames_to_count: int = 3,
        max_centroid_dist: float = 80.0,
        same_class_fallback: bool = False,
    ):
        self.iou_threshold = iou_threshold
        self.max_missed_frames = max_missed_frames
        self.min_frames_to_count = min_frames_to_count
        self.max_centroid_dist = max_centroid_dist
        self.same_class_fallback = same_class_fallback

        # track_id -> identity; insertion order == ascending id
        self._tracks: Dict[int, Track] = {}
        self._next_id: int = 1
        self._frame_id: int = 0

    @classmethod
    def from_config(cls, config: TrackingConfig) -> "IdentityTracker":
        return cls(
            iou_threshold=config.iou_threshold,
            max_missed_frames=config.max_missed_frames,
            min_frames_to_count=config.min_frames_to_count,
            max_centroid_dist=config.max_centroid_dist,
            same_class_fallback=config.same_class_fallback,
        )

    @property
    def tracks(self) -> List[Track]:
        return list(self._tracks.values())

    def reset(self) -> None:
        """
        Forget every identity and restart ids, for a fresh session.
        """
        self._tracks = {}
        self._next_id = 1
        self._frame_id = 0

    def visible_count(self) -> int:
        """
        Counted identities matched in the latest frame.
        """
        return sum(1 for t in self._tracks.values() if t.counted and t.missed_frames == 0)

    def update(self, detections) -> FrameTracks:
        """
        Feed one frame of (zone-filtered) detections.
        Accepts a FrameDetections or a plain sequence of Detection.
        """
        if isinstance(detections, FrameDetections):
            frame_id = detections.frame_id
            dets: Sequence[Detection] = detections.detections
        else:
            self._frame_id += 1
            frame_id = self._frame_id
            dets = list(detections)
        self._frame_id = frame_id

        used_dets: Set[int] = set()
        matched_ids: Set[int] = set()

        # --- Pass 1: match by IoU (strongest signal) ---
        for track_id, track in self._tracks.items():
            best_idx = self._best_by_iou(track, dets, used_dets)
            if best_idx is not None:
                self._bind(track, dets[best_idx])
                matched_ids.add(track_id)
                used_dets.add(best_idx)

        # --- Pass 2: centroid fallback for the rest ---
        for track_id, track in self._tracks.items():
            if track_id in matched_ids:
                continue
            best_idx = self._best_by_centroid(track, dets, used_dets)
            if best_idx is not None:
                self._bind(track, dets[best_idx])
                matched_ids.add(track_id)
                used_dets.add(best_idx)

        # --- Age unmatched identities, evict the ones gone too long ---
        lost: List[Track] = []
        for track_id, track in list(self._tracks.items()):
            if track_id in matched_ids:
                continue
            track.missed_frames += 1
            if track.missed_frames > self.max_missed_frames:
                track.lost = True
                lost.append(track)
                del self._tracks[track_id]
                logger.debug("Track %d lost after %d missed frames", track_id, track.missed_frames)

        # --- Unused detections -> new provisional identities ---
        for idx, det in enumerate(dets):
            if idx in used_dets:
                continue
            track = Track(
                track_id=self._next_id,
                box=det.box,
                class_name=det.class_name,
                score=det.score,
            )
            self._tracks[track.track_id] = track
            self._next_id += 1

        # --- Confirm identities that persisted long enough ---
        count_delta = 0
        for track in self._tracks.values():
            if not track.counted and track.frames_observed >= self.min_frames_to_count:
                track.counted = True
                count_delta += 1
                logger.debug("Track %d counted (%s)", track.track_id, track.class_name)

        return FrameTracks(
            frame_id=frame_id,
            tracks=self.tracks,
            count_delta=count_delta,
            lost=lost,
        )

    def _best_by_iou(self, track: Track, dets: Sequence[Detection], used: Set[int]) -> Optional[int]:
        best_idx = None
        best_iou = 0.0
        for idx, det in enumerate(dets):
            if idx in used:
                continue
            overlap = iou(track.box, det.box)
            if overlap > best_iou:
                best_iou = overlap
                best_idx = idx

        if best_idx is not None and best_iou >= self.iou_threshold:
            return best_idx
        return None

    def _best_by_centroid(self, track: Track, dets: Sequence[Detection], used: Set[int]) -> Optional[int]:
        best_idx = None
        best_dist = float("inf")
        for idx, det in enumerate(dets):
            if idx in used:
                continue
            # NOTE: matches across classes unless same_class_fallback is set
            if self.same_class_fallback and det.class_name != track.class_name:
                continue
            dist = centroid_distance(track.box, det.box)
            if dist < best_dist:
                best_dist = dist
                best_idx = idx

        if best_idx is not None and best_dist <= self.max_centroid_dist:
            return best_idx
        return None

    @staticmethod
    def _bind(track: Track, det: Detection) -> None:
        track.box = det.box
        track.class_name = det.class_name
        track.score = det.score
        track.frames_observed += 1
        track.missed_frames = 0
