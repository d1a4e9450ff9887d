import numpy as np
import pytest

from bottlecount.decoder import Letterbox, decode_output, letterbox, non_max_suppression


def head(candidates, num_classes=2):
    """
    Build a YOLOv8-style output [1, 4 + C, N] from
    (cx, cy, w, h, class_id, score) tuples.
    """
    out = np.zeros((1, 4 + num_classes, len(candidates)), dtype=np.float32)
    for i, (cx, cy, w, h, cls_id, score) in enumerate(candidates):
        out[0, :4, i] = (cx, cy, w, h)
        out[0, 4 + cls_id, i] = score
    return out


def test_letterbox_fit_wide_frame():
    lb = Letterbox.fit(1280, 720, 640)

    assert lb.scale == pytest.approx(0.5)
    assert lb.pad_x == 0
    assert lb.pad_y == pytest.approx(140)


def test_letterbox_inverse_maps_back_to_source():
    lb = Letterbox.fit(1280, 720, 640)

    out = lb.to_source(np.array([[100.0, 190.0, 200.0, 290.0]]))

    np.testing.assert_allclose(out, [[200.0, 100.0, 400.0, 300.0]])


def test_letterbox_image_is_padded_black():
    image = np.full((100, 200, 3), 255, dtype=np.uint8)

    canvas, lb = letterbox(image, 64)

    assert canvas.shape == (64, 64, 3)
    assert lb.pad_y == pytest.approx(16)
    assert canvas[:16].max() == 0
    assert canvas[48:].max() == 0
    assert canvas[16:48].min() == 255


def test_letterbox_odd_padding_matches_pasted_image():
    image = np.full((41, 64, 3), 255, dtype=np.uint8)

    canvas, lb = letterbox(image, 64)

    # 23 rows of padding: 11 above, 12 below
    assert (lb.pad_x, lb.pad_y) == (0, 11)
    assert canvas[:11].max() == 0
    assert canvas[11:52].min() == 255
    assert canvas[52:].max() == 0
    # the pasted image's corners map back onto the source corners
    np.testing.assert_allclose(lb.to_source(np.array([[0.0, 11.0, 64.0, 52.0]])), [[0.0, 0.0, 64.0, 41.0]])


def test_decode_drops_low_scores_and_duplicates():
    lb = Letterbox.fit(1280, 720, 640)
    output = head([
        (150, 240, 100, 100, 0, 0.9),   # kept
        (152, 240, 100, 100, 0, 0.8),   # duplicate of the first
        (500, 300, 60, 80, 1, 0.6),     # kept
        (300, 300, 50, 50, 1, 0.2),     # below threshold
    ])

    dets = decode_output(output, lb, ("bottle", "can"), conf_threshold=0.35, iou_threshold=0.45)

    assert [d.class_name for d in dets] == ["bottle", "can"]
    assert [d.score for d in dets] == pytest.approx([0.9, 0.6])
    first = dets[0].box
    assert (first.x, first.y, first.width, first.height) == pytest.approx((200.0, 100.0, 200.0, 200.0))


def test_decode_without_batch_dim():
    lb = Letterbox.fit(640, 640, 640)
    output = head([(320, 320, 40, 40, 1, 0.7)])[0]

    dets = decode_output(output, lb, ("bottle", "can"), 0.35, 0.45)

    assert len(dets) == 1
    assert dets[0].box.center == pytest.approx((320.0, 320.0))


def test_decode_nothing_above_threshold_is_empty():
    lb = Letterbox.fit(640, 480, 640)
    output = head([(100, 100, 10, 10, 0, 0.1), (200, 200, 10, 10, 1, 0.3)])

    assert decode_output(output, lb, ("bottle", "can"), 0.35, 0.45) == []


def test_decode_unknown_class_id_gets_generic_label():
    lb = Letterbox.fit(640, 640, 640)
    output = head([(100, 100, 20, 20, 2, 0.9)], num_classes=3)

    dets = decode_output(output, lb, ("bottle", "can"), 0.35, 0.45)

    assert dets[0].class_name == "class_2"


def test_decode_rejects_malformed_output():
    lb = Letterbox.fit(640, 640, 640)
    with pytest.raises(ValueError):
        decode_output(np.zeros((1, 3, 10)), lb, ("bottle",), 0.35, 0.45)


def test_nms_keeps_highest_score_first():
    boxes = np.array([
        [0, 0, 10, 10],
        [1, 1, 11, 11],
        [50, 50, 60, 60],
    ], dtype=float)
    scores = np.array([0.5, 0.9, 0.7])

    assert non_max_suppression(boxes, scores, 0.45) == [1, 2]


def test_nms_ties_break_by_index():
    boxes = np.array([[0, 0, 10, 10], [0, 0, 10, 10]], dtype=float)
    scores = np.array([0.8, 0.8])

    assert non_max_suppression(boxes, scores, 0.45) == [0]


def test_nms_removes_only_overlap_above_threshold():
    # IoU of these two boxes is exactly 0.5
    boxes = np.array([[0, 0, 10, 10], [0, 0, 10, 5]], dtype=float)
    scores = np.array([0.9, 0.8])

    assert non_max_suppression(boxes, scores, 0.5) == [0, 1]
    assert non_max_suppression(boxes, scores, 0.49) == [0]


def test_nms_empty_input():
    assert non_max_suppression(np.zeros((0, 4)), np.zeros(0), 0.45) == []


def test_nms_is_idempotent():
    rng = np.random.default_rng(7)
    xy = rng.uniform(0, 300, size=(60, 2))
    wh = rng.uniform(20, 80, size=(60, 2))
    boxes = np.hstack([xy, xy + wh])
    # every box also shows up shifted by one pixel
    boxes = np.vstack([boxes, boxes + 1.0])
    scores = rng.uniform(0, 1, size=120)

    keep = non_max_suppression(boxes, scores, 0.45)
    again = non_max_suppression(boxes[keep], scores[keep], 0.45)

    assert len(keep) <= 60
    assert sorted(again) == list(range(len(keep)))
