"""
回测任务服务集成测试

验证任务在后台线程中真实运行：提交、轮询、取消、失败、结果发布。
"""

import threading
import time
from datetime import datetime, timedelta

import pytest

from cryptosim.backtest.config import SimulationConfig, StrategyConfig
from cryptosim.backtest.models import Signal
from cryptosim.backtest.signals import SignalSource, build_signal_source
from cryptosim.config.settings import SimulationSettings
from cryptosim.exceptions import JobLimitError, JobNotFoundError, ValidationError
from cryptosim.jobs import JobStatus, SimulationJob, SimulationService
from cryptosim.providers import InMemoryMarketData, InMemoryResultSink, SyntheticDataProvider

pytestmark = pytest.mark.integration

TIMEOUT = 30


class GatedSource(SignalSource):
    """在指定K线阻塞，直到测试放行"""

    name = "gated"

    def __init__(self, gate_index):
        self.gate_index = gate_index
        self.reached = threading.Event()
        self.release = threading.Event()

    def decide(self, history, predictions, index):
        if index == self.gate_index:
            self.reached.set()
            self.release.wait(TIMEOUT)
        return Signal.HOLD


class UnnamedSource(SignalSource):
    """没有名称的信号源：结果摘要无法构造"""

    name = None

    def decide(self, history, predictions, index):
        return Signal.HOLD


class FailingSource(SignalSource):
    name = "failing"

    def decide(self, history, predictions, index):
        if index == 5:
            raise ZeroDivisionError("bad model")
        return Signal.HOLD


@pytest.fixture
def settings():
    return SimulationSettings(_env_file=None, progress_interval=100, max_active_jobs=3)


@pytest.fixture
def sink():
    return InMemoryResultSink()


@pytest.fixture
def service(settings, sink):
    provider = SyntheticDataProvider(seed=11)
    svc = SimulationService(market_data=provider, prediction_provider=provider, result_sink=sink, settings=settings)
    yield svc
    svc.shutdown(timeout=TIMEOUT)


def wait_until(predicate, timeout=TIMEOUT):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestSubmitAndPoll:

    def test_completed_job(self, service, sink, make_config, make_series):
        config = make_config()
        job_id = service.submit(config, series=make_series([100.0, 110.0, 121.0]))

        snapshot = service.wait(job_id, timeout=TIMEOUT)
        assert snapshot.status == JobStatus.COMPLETED
        assert snapshot.progress == 100.0
        assert snapshot.error is None

        result = service.get_result(job_id)
        assert result is not None
        assert len(result.trades) == 1
        assert result.final_value == pytest.approx(540.0 + 86 * 121.0)

    def test_result_published_once(self, service, sink, make_config, make_series):
        job_id = service.submit(make_config(), series=make_series([100.0, 110.0, 121.0]))
        service.wait(job_id, timeout=TIMEOUT)

        assert wait_until(lambda: len(sink.published) == 1)
        summary, result = sink.published[0]
        assert summary.job_id == job_id
        assert summary.total_trades == 1
        assert summary.final_capital == pytest.approx(result.final_value)
        assert summary.total_return_pct == pytest.approx(result.metrics.total_return_pct)

    def test_series_loaded_from_provider(self, service):
        config = build_config("technical_analysis")
        job_id = service.submit(config)

        snapshot = service.wait(job_id, timeout=TIMEOUT)
        assert snapshot.status == JobStatus.COMPLETED
        assert snapshot.total_bars == 120
        assert service.get_result(job_id).metrics.trading_days == 119

    def test_progress_listener(self, settings, make_config, make_series):
        events = []
        gate = GatedSource(gate_index=1)
        svc = SimulationService(settings=settings, signal_factory=lambda strategy: gate)
        try:
            job_id = svc.submit(make_config(), series=make_series([100.0] * 350))
            svc.add_progress_listener(job_id, lambda jid, payload: events.append((jid, payload.progress)))
            gate.release.set()
            svc.wait(job_id, timeout=TIMEOUT)
        finally:
            svc.shutdown(timeout=TIMEOUT)

        progresses = [p for _, p in events]
        assert {jid for jid, _ in events} == {job_id}
        assert progresses == sorted(progresses)
        assert progresses[-1] == pytest.approx(349 / 350 * 100)

    def test_listener_errors_do_not_break_job(self, settings, make_config, make_series):
        def bad_listener(job_id, payload):
            raise RuntimeError("listener failed")

        gate = GatedSource(gate_index=1)
        svc = SimulationService(settings=settings, signal_factory=lambda strategy: gate)
        try:
            job_id = svc.submit(make_config(), series=make_series([100.0] * 250))
            svc.add_progress_listener(job_id, bad_listener)
            gate.release.set()
            assert svc.wait(job_id, timeout=TIMEOUT).status == JobStatus.COMPLETED
        finally:
            svc.shutdown(timeout=TIMEOUT)

    def test_removed_listener_is_not_called(self, settings, make_config, make_series):
        kept, removed = [], []

        def keep(job_id, payload):
            kept.append(payload.progress)

        def drop(job_id, payload):
            removed.append(payload.progress)

        gate = GatedSource(gate_index=1)
        svc = SimulationService(settings=settings, signal_factory=lambda strategy: gate)
        try:
            job_id = svc.submit(make_config(), series=make_series([100.0] * 250))
            svc.add_progress_listener(job_id, keep)
            svc.add_progress_listener(job_id, drop)

            assert svc.remove_progress_listener(job_id, drop) is True
            assert svc.remove_progress_listener(job_id, drop) is False
            assert svc.remove_progress_listener("missing", keep) is False

            gate.release.set()
            svc.wait(job_id, timeout=TIMEOUT)
        finally:
            svc.shutdown(timeout=TIMEOUT)

        assert kept
        assert removed == []


class TestCancellation:

    def test_cancel_running_job(self, settings, make_config, make_series):
        gate = GatedSource(gate_index=500)
        # 阻塞在第500根K线时，最近一次上报的是第400根K线的进度
        checkpoint = 400 / 10_000 * 100
        start = datetime(2024, 1, 1)
        series = make_series([100.0] * 10_000, start=start, step=timedelta(minutes=30))
        config = make_config(start=start, end=series.end)

        with SimulationService(settings=settings, signal_factory=lambda strategy: gate) as service:
            job_id = service.submit(config, series=series)

            assert gate.reached.wait(TIMEOUT)
            assert wait_until(lambda: service.get_job(job_id).progress == pytest.approx(checkpoint))
            assert service.cancel(job_id) is True
            gate.release.set()

            snapshot = service.wait(job_id, timeout=TIMEOUT)

        assert snapshot.status == JobStatus.CANCELLED
        assert 0 < snapshot.progress < 100
        assert snapshot.progress <= checkpoint
        assert snapshot.bars_processed == 500
        assert snapshot.error is None
        assert service.get_result(job_id) is None

    def test_cancel_finished_job_returns_false(self, service, make_config, make_series):
        job_id = service.submit(make_config(), series=make_series([100.0, 101.0, 102.0]))
        snapshot = service.wait(job_id, timeout=TIMEOUT)
        assert snapshot.status == JobStatus.COMPLETED
        assert service.cancel(job_id) is False


class TestFailures:

    def test_validation_error_is_synchronous(self, service, make_config):
        config = make_config(start=datetime(2024, 6, 1), end=datetime(2024, 1, 1))
        with pytest.raises(ValidationError):
            service.submit(config)
        assert service.list_jobs() == []

    def test_missing_data_fails_job(self, settings, make_config):
        with SimulationService(market_data=InMemoryMarketData(), settings=settings) as service:
            job_id = service.submit(make_config())
            snapshot = service.wait(job_id, timeout=TIMEOUT)

        assert snapshot.status == JobStatus.FAILED
        assert snapshot.error.startswith("DataUnavailableError")

    def test_two_bar_series_fails_without_running(self, service, make_config, make_series):
        job_id = service.submit(make_config(), series=make_series([100.0, 110.0]))
        snapshot = service.wait(job_id, timeout=TIMEOUT)

        assert snapshot.status == JobStatus.FAILED
        assert snapshot.error.startswith("InsufficientDataError")
        assert snapshot.started_at is None
        assert snapshot.bars_processed == 0
        assert service.get_result(job_id) is None

    def test_strategy_crash_fails_job(self, settings, make_config, make_series):
        with SimulationService(settings=settings, signal_factory=lambda strategy: FailingSource()) as service:
            job_id = service.submit(make_config(), series=make_series([100.0] * 20))
            snapshot = service.wait(job_id, timeout=TIMEOUT)

        assert snapshot.status == JobStatus.FAILED
        assert snapshot.error.startswith("ExecutionError")
        assert snapshot.bars_processed == 5
        assert service.get_result(job_id) is None

    def test_unknown_job(self, service):
        with pytest.raises(JobNotFoundError):
            service.get_job("missing")
        with pytest.raises(JobNotFoundError):
            service.cancel("missing")

    def test_active_job_limit(self, make_config, make_series):
        gate = GatedSource(gate_index=1)
        settings = SimulationSettings(_env_file=None, max_active_jobs=1)

        with SimulationService(settings=settings, signal_factory=lambda strategy: gate) as service:
            first = service.submit(make_config(), series=make_series([100.0] * 5))
            with pytest.raises(JobLimitError):
                service.submit(make_config(), series=make_series([100.0] * 5))

            gate.release.set()
            service.wait(first, timeout=TIMEOUT)
            second = service.submit(make_config(), series=make_series([100.0] * 5))
            assert service.wait(second, timeout=TIMEOUT).status == JobStatus.COMPLETED


class TestDispatcherResilience:

    def test_summary_failure_does_not_stop_dispatcher(self, settings, sink, make_config, make_series):
        sources = iter([UnnamedSource(), build_signal_source(StrategyConfig(kind="buy_and_hold"))])

        with SimulationService(
            result_sink=sink, settings=settings, signal_factory=lambda strategy: next(sources)
        ) as service:
            first = service.submit(make_config(), series=make_series([100.0, 110.0, 121.0]))
            assert service.wait(first, timeout=TIMEOUT).status == JobStatus.COMPLETED

            second = service.submit(make_config(), series=make_series([100.0, 110.0, 121.0]))
            assert service.wait(second, timeout=TIMEOUT).status == JobStatus.COMPLETED

        assert [summary.job_id for summary, _ in sink.published] == [second]

    def test_unexpected_apply_error_fails_job(self, settings, make_config, make_series, monkeypatch):
        original_complete = SimulationJob.complete
        calls = []

        def broken_once(job, result):
            calls.append(job.id)
            if len(calls) == 1:
                raise RuntimeError("store unavailable")
            original_complete(job, result)

        monkeypatch.setattr(SimulationJob, "complete", broken_once)

        with SimulationService(settings=settings) as service:
            first = service.submit(make_config(), series=make_series([100.0, 110.0, 121.0]))
            snapshot = service.wait(first, timeout=TIMEOUT)
            assert snapshot.status == JobStatus.FAILED
            assert snapshot.error == "RuntimeError: store unavailable"
            assert service.get_result(first) is None

            second = service.submit(make_config(), series=make_series([100.0, 110.0, 121.0]))
            assert service.wait(second, timeout=TIMEOUT).status == JobStatus.COMPLETED


class TestBookkeeping:

    def test_stats_and_cleanup(self, service, make_config, make_series):
        ids = [service.submit(make_config(), series=make_series([100.0, 110.0, 121.0])) for _ in range(3)]
        for job_id in ids:
            service.wait(job_id, timeout=TIMEOUT)

        stats = service.stats()
        assert stats["total"] == 3
        assert stats["by_status"]["completed"] == 3
        assert stats["active"] == 0
        assert stats["average_execution_time"] >= 0
        assert service.active_jobs() == []
        assert [s.id for s in service.list_jobs()] == ids

        assert service.cleanup_finished() == 3
        assert service.list_jobs() == []

    def test_jobs_are_isolated(self, service, make_config, make_series):
        a = service.submit(make_config(), series=make_series([100.0, 110.0, 121.0]))
        b = service.submit(make_config(initial_capital=20_000.0), series=make_series([100.0, 90.0, 80.0]))
        service.wait(a, timeout=TIMEOUT)
        service.wait(b, timeout=TIMEOUT)

        assert service.get_result(a).final_value == pytest.approx(540.0 + 86 * 121.0)
        assert service.get_result(b).trades[0].quantity == 211

    def test_submit_after_shutdown(self, settings, make_config, make_series):
        service = SimulationService(settings=settings)
        service.shutdown()
        with pytest.raises(Exception, match="shut down"):
            service.submit(make_config(), series=make_series([1.0, 2.0]))


def build_config(kind):
    start = datetime(2024, 1, 1)
    return SimulationConfig(
        symbol="BTC",
        start_date=start,
        end_date=start + timedelta(days=120),
        initial_capital=50_000.0,
        strategy=StrategyConfig(kind=kind),
    )


def test_factory_default_is_builtin(settings):
    with SimulationService(settings=settings) as service:
        assert service.signal_factory is build_signal_source
