import pytest

from bottlecount.config import PipelineConfig, TrackingConfig, ZoneConfig, load_config
from bottlecount.errors import ConfigurationInvalid


def test_defaults_are_valid():
    cfg = PipelineConfig().validate()

    assert cfg.tracking == TrackingConfig(0.3, 8, 3, 80.0, False)
    assert cfg.zone == ZoneConfig(0.2, 0.2, 0.2, 0.2)
    assert cfg.detection.confidence_thresholds == {"bottle": 0.35, "cup": 0.5}
    assert cfg.detection.display_names == {"cup": "can"}


@pytest.mark.parametrize(
    "options",
    [
        {"iouThreshold": 1.5},
        {"confidenceThresholds": {"bottle": -0.1}},
        {"detectionFps": -5},
        {"detectionFps": 0},
        {"minFramesToCount": 0},
        {"maxMissedFrames": -1},
        {"maxCentroidDist": -1},
        {"tripwireY": 1.2},
        {"tripwireChangeThreshold": 2},
        {"tripwireCooldownMs": -400},
        {"zoneInsetFractions": {"left": 0.6, "top": 0.2, "right": 0.5, "bottom": 0.2}},
        {"confidenceThresholds": [0.4]},
        {"confidenceThresholds": {"bottle": "high"}},
        {"zoneInsetFractions": {"x": "a", "y": 0.2, "width": 0.6, "height": 0.6}},
        {"zoneInsetFractions": {"x": 0.2, "y": 0.2, "width": None, "height": 0.6}},
        {"zoneInsetFractions": {"left": "wide"}},
        {"zoneInsetFractions": [0.2, 0.2, 0.6, 0.6]},
    ],
)
def test_rejects_out_of_range(options):
    with pytest.raises(ConfigurationInvalid):
        PipelineConfig.from_options(options)


def test_reports_every_problem():
    with pytest.raises(ConfigurationInvalid) as info:
        PipelineConfig.from_options({"iouThreshold": 2.0, "tripwireY": -1})

    assert len(info.value.problems) == 2


def test_from_options_maps_camel_case():
    cfg = PipelineConfig.from_options({
        "confidenceThresholds": {"bottle": 0.4},
        "iouThreshold": 0.5,
        "maxMissedFrames": 4,
        "minFramesToCount": 2,
        "maxCentroidDist": 40,
        "detectionFps": 10,
        "zoneInsetFractions": {"x": 0.1, "y": 0.25, "width": 0.8, "height": 0.5},
        "tripwireY": 0.7,
        "tripwireChangeThreshold": 0.2,
        "tripwireCooldownMs": 300,
    })

    assert cfg.detection.confidence_thresholds == {"bottle": 0.4}
    assert cfg.detection.detection_fps == 10
    assert cfg.tracking == TrackingConfig(0.5, 4, 2, 40, False)
    assert cfg.zone.left == pytest.approx(0.1)
    assert cfg.zone.right == pytest.approx(0.1)
    assert cfg.zone.top == pytest.approx(0.25)
    assert cfg.zone.bottom == pytest.approx(0.25)
    assert (cfg.tripwire.line_y, cfg.tripwire.change_threshold, cfg.tripwire.cooldown_ms) == (0.7, 0.2, 300)


def test_from_options_unknown_key():
    with pytest.raises(ConfigurationInvalid):
        PipelineConfig.from_options({"iou": 0.3})


def test_from_dict_nested():
    cfg = PipelineConfig.from_dict({
        "mode": "tripwire",
        "tracking": {"iou_threshold": 0.4},
        "detection": {"target_classes": ["bottle"]},
    })

    assert cfg.mode == "tripwire"
    assert cfg.tracking.iou_threshold == 0.4
    assert cfg.detection.target_classes == ("bottle",)


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ConfigurationInvalid):
        PipelineConfig.from_dict({"tracking": {"iou": 0.4}})
    with pytest.raises(ConfigurationInvalid):
        PipelineConfig.from_dict({"trackers": {}})


def test_bad_mode():
    with pytest.raises(ConfigurationInvalid):
        PipelineConfig(mode="sonar").validate()


def test_config_is_immutable():
    cfg = PipelineConfig()
    with pytest.raises(AttributeError):
        cfg.mode = "tripwire"


def test_config_mappings_are_read_only():
    thresholds = {"bottle": 0.4}
    cfg = PipelineConfig.from_options({"confidenceThresholds": thresholds})

    with pytest.raises(TypeError):
        cfg.detection.confidence_thresholds["bottle"] = 0.9
    with pytest.raises(TypeError):
        cfg.detection.display_names["can"] = "tin"

    # the caller's dict is copied, not shared
    thresholds["bottle"] = 0.9
    assert cfg.detection.confidence_thresholds["bottle"] == 0.4


def test_display_names_must_be_a_mapping_of_strings():
    with pytest.raises(ConfigurationInvalid) as info:
        PipelineConfig.from_dict({"detection": {"display_names": {"cup": 3}}})

    assert info.value.problems == ["detection.display_names[cup] must be a string, got 3"]


def test_load_config_yaml(tmp_path):
    path = tmp_path / "counting.yaml"
    path.write_text(
        "mode: tripwire\n"
        "tripwire:\n"
        "  line_y: 0.6\n"
        "  cooldown_ms: 500\n"
        "logging:\n"
        "  level: DEBUG\n"
        "  log_path: logs/run.log\n"
    )

    cfg = load_config(path)

    assert cfg.mode == "tripwire"
    assert cfg.tripwire.line_y == 0.6
    assert cfg.tripwire.cooldown_ms == 500
    assert cfg.logging.level == "DEBUG"
    assert cfg.logging.log_path.name == "run.log"


def test_load_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")

    assert load_config(path) == PipelineConfig()


def test_load_invalid_yaml_values(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("tracking:\n  min_frames_to_count: 0\n")

    with pytest.raises(ConfigurationInvalid):
        load_config(path)
