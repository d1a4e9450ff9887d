# all configurations in one place

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from bottlecount.errors import ConfigurationInvalid

# Paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
MODELS_DIR = PROJECT_ROOT / "models"

MODES = ("detector", "tripwire")


@dataclass(frozen=True)
class VideoConfig:
    source: Union[int, str] = 0  # 0 for webcam, or path to video file
    frame_width: int = 0         # 0 keeps the native size
    frame_height: int = 0


@dataclass(frozen=True)
class DetectionConfig:
    model_path: Path = MODELS_DIR / "detector" / "bottle-can.onnx"
    fallback_model: str = "yolov8n.pt"  # ultralytics weights, COCO classes
    class_names: Tuple[str, ...] = ("bottle", "can")  # output order of the ONNX model
    target_classes: Tuple[str, ...] = ("bottle", "can", "cup")
    # cups need a higher score to keep false positives down
    confidence_thresholds: Mapping[str, float] = field(
        default_factory=lambda: {"bottle": 0.35, "cup": 0.5}
    )
    default_confidence_threshold: float = 0.35
    display_names: Mapping[str, str] = field(default_factory=lambda: {"cup": "can"})
    decode_confidence: float = 0.35
    nms_iou_threshold: float = 0.45
    input_size: int = 640
    detection_fps: int = 15
    timeout_ms: int = 1000
    device: str = "cpu"  # or "cuda"

    def __post_init__(self):
        # read-only copies; anything that is not a mapping is left for validate() to report
        for name in ("confidence_thresholds", "display_names"):
            value = getattr(self, name)
            if isinstance(value, Mapping):
                object.__setattr__(self, name, MappingProxyType(dict(value)))


@dataclass(frozen=True)
class TrackingConfig:
    iou_threshold: float = 0.3        # min IoU to match a detection to an identity
    max_missed_frames: int = 8        # frames to keep unmatched identities
    min_frames_to_count: int = 3      # frames before an identity is counted
    max_centroid_dist: float = 80.0   # pixels, centroid fallback match
    same_class_fallback: bool = False  # restrict the centroid fallback to equal classes


@dataclass(frozen=True)
class ZoneConfig:
    # insets as fractions of the frame size; 0.2 each = central 60%
    left: float = 0.2
    top: float = 0.2
    right: float = 0.2
    bottom: float = 0.2


@dataclass(frozen=True)
class TripwireConfig:
    line_y: float = 0.5            # relative vertical position of the line (0-1)
    change_threshold: float = 0.15  # fraction of strip pixels that must change
    pixel_delta: int = 30          # min intensity delta for a pixel to count as changed
    strip_height: int = 30         # px tall strip around the line
    cooldown_ms: int = 400
    flash_ms: int = 200
    fps: int = 20                  # 0 = sample every frame


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    log_path: Optional[Path] = None


@dataclass(frozen=True)
class PipelineConfig:
    mode: str = "detector"
    video: VideoConfig = field(default_factory=VideoConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    zone: ZoneConfig = field(default_factory=ZoneConfig)
    tripwire: TripwireConfig = field(default_factory=TripwireConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    debug: bool = False

    def validate(self) -> "PipelineConfig":
        """
        Reject out-of-range options. Nothing is clamped.
        Returns self so it can be chained.
        """
        problems = _collect_problems(self)
        if problems:
            raise ConfigurationInvalid(problems)
        return self

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        """
        Build a config from nested sections, e.g. the content of a YAML file:

            mode: tripwire
            tracking:
              iou_threshold: 0.3
            tripwire:
              line_y: 0.6
        """
        known = {f.name for f in fields(cls)}
        section_types = {
            "video": VideoConfig,
            "detection": DetectionConfig,
            "tracking": TrackingConfig,
            "zone": ZoneConfig,
            "tripwire": TripwireConfig,
            "logging": LoggingConfig,
        }

        unknown = [key for key in data if key not in known]
        if unknown:
            raise ConfigurationInvalid(f"unknown option '{key}'" for key in unknown)

        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key in section_types:
                kwargs[key] = _build_section(section_types[key], key, value or {})
            else:
                kwargs[key] = value
        return cls(**kwargs).validate()

    @classmethod
    def from_options(cls, options: Mapping[str, Any], base: Optional["PipelineConfig"] = None) -> "PipelineConfig":
        """
        Build a config from the flat camelCase option structure:
        confidenceThresholds, iouThreshold, maxMissedFrames, minFramesToCount,
        maxCentroidDist, detectionFps, zoneInsetFractions, tripwireY,
        tripwireChangeThreshold, tripwireCooldownMs.
        """
        base = base or cls()
        detection: Dict[str, Any] = {}
        tracking: Dict[str, Any] = {}
        tripwire: Dict[str, Any] = {}
        zone = base.zone

        for key, value in options.items():
            if key in _OPTION_KEYS:
                section, name = _OPTION_KEYS[key]
                {"detection": detection, "tracking": tracking, "tripwire": tripwire}[section][name] = value
            elif key == "zoneInsetFractions":
                zone = _zone_from_rect(value)
            else:
                raise ConfigurationInvalid([f"unknown option '{key}'"])

        config = replace(
            base,
            detection=replace(base.detection, **detection),
            tracking=replace(base.tracking, **tracking),
            tripwire=replace(base.tripwire, **tripwire),
            zone=zone,
        )
        return config.validate()


_OPTION_KEYS = {
    "confidenceThresholds": ("detection", "confidence_thresholds"),
    "detectionFps": ("detection", "detection_fps"),
    "iouThreshold": ("tracking", "iou_threshold"),
    "maxMissedFrames": ("tracking", "max_missed_frames"),
    "minFramesToCount": ("tracking", "min_frames_to_count"),
    "maxCentroidDist": ("tracking", "max_centroid_dist"),
    "tripwireY": ("tripwire", "line_y"),
    "tripwireChangeThreshold": ("tripwire", "change_threshold"),
    "tripwireCooldownMs": ("tripwire", "cooldown_ms"),
}


def load_config(path: Union[str, Path]) -> PipelineConfig:
    """
    Load a PipelineConfig from a YAML file. An empty file gives the defaults.
    """
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, Mapping):
        raise ConfigurationInvalid([f"{path}: top level must be a mapping"])
    return PipelineConfig.from_dict(data)


def _build_section(section_type, name: str, values: Mapping[str, Any]):
    if not isinstance(values, Mapping):
        raise ConfigurationInvalid([f"section '{name}' must be a mapping"])

    known = {f.name for f in fields(section_type)}
    unknown = [key for key in values if key not in known]
    if unknown:
        raise ConfigurationInvalid(f"unknown option '{name}.{key}'" for key in unknown)

    values = dict(values)
    # YAML gives lists, the dataclasses hold tuples / paths
    for key in ("class_names", "target_classes"):
        if key in values and isinstance(values[key], list):
            values[key] = tuple(values[key])
    for key in ("model_path", "log_path"):
        if values.get(key) is not None:
            values[key] = Path(values[key])
    return section_type(**values)


def _zone_from_rect(rect: Any) -> ZoneConfig:
    """
    Accepts {left, top, right, bottom} or {x, y, width, height}.
    The latter describes the inner rectangle, e.g. {x: .2, y: .2, width: .6, height: .6}.
    """
    if not isinstance(rect, Mapping):
        raise ConfigurationInvalid(["zoneInsetFractions must be a mapping"])
    if {"x", "y", "width", "height"} <= set(rect):
        bad = [key for key in ("x", "y", "width", "height") if not _is_number(rect[key])]
        if bad:
            raise ConfigurationInvalid(
                f"zoneInsetFractions.{key} must be a number, got {rect[key]!r}" for key in bad
            )
        return ZoneConfig(
            left=rect["x"],
            top=rect["y"],
            right=1.0 - rect["x"] - rect["width"],
            bottom=1.0 - rect["y"] - rect["height"],
        )
    try:
        return ZoneConfig(**rect)
    except TypeError as exc:
        raise ConfigurationInvalid([f"zoneInsetFractions: {exc}"]) from exc


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_fraction(problems: List[str], name: str, value: Any) -> None:
    if not _is_number(value) or not 0.0 <= value <= 1.0:
        problems.append(f"{name} must be within [0, 1], got {value!r}")


def _check_min(problems: List[str], name: str, value: Any, minimum: float, integer: bool = False) -> None:
    if integer and (not isinstance(value, int) or isinstance(value, bool)):
        problems.append(f"{name} must be an integer, got {value!r}")
    elif not _is_number(value) or value < minimum:
        problems.append(f"{name} must be >= {minimum}, got {value!r}")


def _collect_problems(config: PipelineConfig) -> List[str]:
    problems: List[str] = []

    if config.mode not in MODES:
        problems.append(f"mode must be one of {MODES}, got {config.mode!r}")

    det = config.detection
    if not isinstance(det.confidence_thresholds, Mapping):
        problems.append(f"detection.confidence_thresholds must be a mapping, got {det.confidence_thresholds!r}")
    else:
        for cls_name, value in det.confidence_thresholds.items():
            _check_fraction(problems, f"detection.confidence_thresholds[{cls_name}]", value)
    if not isinstance(det.display_names, Mapping):
        problems.append(f"detection.display_names must be a mapping, got {det.display_names!r}")
    else:
        for cls_name, value in det.display_names.items():
            if not isinstance(value, str):
                problems.append(f"detection.display_names[{cls_name}] must be a string, got {value!r}")
    _check_fraction(problems, "detection.default_confidence_threshold", det.default_confidence_threshold)
    _check_fraction(problems, "detection.decode_confidence", det.decode_confidence)
    _check_fraction(problems, "detection.nms_iou_threshold", det.nms_iou_threshold)
    _check_min(problems, "detection.input_size", det.input_size, 1, integer=True)
    _check_min(problems, "detection.detection_fps", det.detection_fps, 1, integer=True)
    _check_min(problems, "detection.timeout_ms", det.timeout_ms, 1, integer=True)
    if not det.target_classes:
        problems.append("detection.target_classes must not be empty")

    trk = config.tracking
    _check_fraction(problems, "tracking.iou_threshold", trk.iou_threshold)
    _check_min(problems, "tracking.max_missed_frames", trk.max_missed_frames, 0, integer=True)
    _check_min(problems, "tracking.min_frames_to_count", trk.min_frames_to_count, 1, integer=True)
    _check_min(problems, "tracking.max_centroid_dist", trk.max_centroid_dist, 0)

    zone = config.zone
    for side in ("left", "top", "right", "bottom"):
        _check_fraction(problems, f"zone.{side}", getattr(zone, side))
    if _is_number(zone.left) and _is_number(zone.right) and zone.left + zone.right >= 1.0:
        problems.append("zone.left + zone.right must be < 1")
    if _is_number(zone.top) and _is_number(zone.bottom) and zone.top + zone.bottom >= 1.0:
        problems.append("zone.top + zone.bottom must be < 1")

    tw = config.tripwire
    _check_fraction(problems, "tripwire.line_y", tw.line_y)
    _check_fraction(problems, "tripwire.change_threshold", tw.change_threshold)
    _check_min(problems, "tripwire.pixel_delta", tw.pixel_delta, 0, integer=True)
    if isinstance(tw.pixel_delta, int) and tw.pixel_delta > 255:
        problems.append(f"tripwire.pixel_delta must be <= 255, got {tw.pixel_delta}")
    _check_min(problems, "tripwire.strip_height", tw.strip_height, 1, integer=True)
    _check_min(problems, "tripwire.cooldown_ms", tw.cooldown_ms, 0, integer=True)
    _check_min(problems, "tripwire.flash_ms", tw.flash_ms, 0, integer=True)
    _check_min(problems, "tripwire.fps", tw.fps, 0, integer=True)

    _check_min(problems, "video.frame_width", config.video.frame_width, 0, integer=True)
    _check_min(problems, "video.frame_height", config.video.frame_height, 0, integer=True)

    return problems
