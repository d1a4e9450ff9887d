import numpy as np
import pytest

from bottlecount.data_types import BoundingBox, Detection, Frame


def detection(x, y, w=100, h=100, class_name="bottle", score=0.9):
    return Detection(box=BoundingBox(x, y, w, h), score=score, class_name=class_name, display_name=class_name)


def gray_frame(value, height=120, width=160, timestamp_ms=0.0, frame_id=0):
    image = np.full((height, width), value, dtype=np.uint8)
    return Frame(image=image, timestamp_ms=timestamp_ms, frame_id=frame_id)


@pytest.fixture
def make_detection():
    return detection


@pytest.fixture
def make_gray_frame():
    return gray_frame
