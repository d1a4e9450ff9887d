import pytest

from bottlecount.counter import SessionCounter


def test_accumulates_deltas():
    counter = SessionCounter()
    for delta in (0, 1, 0, 2):
        counter(delta)

    assert counter.total == 3
    assert counter.session_total == 3


def test_negative_delta_rejected():
    counter = SessionCounter()
    with pytest.raises(ValueError):
        counter(-1)


def test_manual_corrections():
    counter = SessionCounter()
    counter.increment()
    counter.decrement()
    counter.decrement()

    assert counter.total == 0
    assert counter.session_total == 0


def test_reset_keeps_session_total():
    counter = SessionCounter()
    counter(4)
    counter.reset()
    counter(1)

    assert counter.total == 1
    assert counter.session_total == 5

    counter.reset_session()
    assert (counter.total, counter.session_total) == (0, 0)
