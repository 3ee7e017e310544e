"""数据回放器单元测试"""

from datetime import timedelta

import pytest

from cryptosim.backtest.data_replay import DataReplay
from cryptosim.backtest.models import PredictionPoint


@pytest.fixture
def replay(make_series, start_date):
    predictions = [
        PredictionPoint(timestamp=start_date + timedelta(days=d), predicted_price=100.0, confidence=0.7)
        for d in (2, 0, 1)
    ]
    return DataReplay(make_series([100.0, 101.0, 102.0, 103.0]), predictions)


def test_replay_starts_at_second_bar(replay):
    index, bar = replay.next()

    assert index == 1
    assert bar.close == 101.0
    assert replay.previous_bar().close == 100.0
    assert [b.close for b in replay.history()] == [100.0, 101.0]


def test_iteration_visits_remaining_bars(replay):
    assert [index for index, _ in replay] == [1, 2, 3]
    assert not replay.has_next()
    with pytest.raises(StopIteration):
        replay.next()


def test_predictions_until_is_sorted_prefix(replay, start_date):
    visible = replay.predictions_until(start_date + timedelta(days=1))
    assert [p.timestamp for p in visible] == [start_date, start_date + timedelta(days=1)]
    assert replay.predictions_until(start_date - timedelta(days=1)) == ()


def test_progress_and_reset(replay):
    replay.next()
    replay.next()
    assert replay.progress == pytest.approx(0.5)

    replay.reset()
    assert replay.current_index == 0
    assert len(replay) == 4
