"""
Unit tests for memory-adaptive batch control.
"""

from unittest.mock import AsyncMock, patch

import pytest

from conftest import FakeMemorySource
from docingest.monitoring.memory import AdaptiveParams, MemoryController, MemoryStatus


def controller_for(readings_mb, sleep=None, **kwargs):
    kwargs.setdefault("batch_delay", 0.0)
    return MemoryController(source=FakeMemorySource(readings_mb), sleep=sleep or AsyncMock(), **kwargs)


class TestCheckStatus:
    @pytest.mark.parametrize("usage_mb, status", [
        (100, MemoryStatus.NORMAL),
        (511, MemoryStatus.NORMAL),
        (512, MemoryStatus.WARNING),
        (900, MemoryStatus.WARNING),
        (1024, MemoryStatus.CRITICAL),
        (4000, MemoryStatus.CRITICAL),
    ])
    def test_thresholds(self, usage_mb, status):
        report = controller_for([usage_mb]).check_status()

        assert report.status == status

    def test_report_contents(self):
        report = controller_for([1024]).check_status()

        assert report.usage_percent == pytest.approx(50.0)
        assert "garbage collection" in report.recommendation

    def test_memory_stats(self):
        stats = controller_for([256]).get_memory_stats()

        assert stats["status"] == "normal"
        assert stats["usage_mb"] == 256
        assert stats["warning_mb"] == 512
        assert stats["critical_mb"] == 1024

    def test_records_metric(self, metrics):
        controller_for([256], metrics=metrics).check_status()

        assert metrics.get_series("memory_usage_percent")[0].value == pytest.approx(12.5)


class TestNextBatchSize:
    def test_critical_quarters(self):
        controller = controller_for([100])
        assert controller.next_batch_size(8, MemoryStatus.CRITICAL) == 2
        assert controller.next_batch_size(2, MemoryStatus.CRITICAL) == 1

    def test_warning_halves(self):
        controller = controller_for([100])
        assert controller.next_batch_size(10, MemoryStatus.WARNING) == 5
        assert controller.next_batch_size(1, MemoryStatus.WARNING) == 1

    def test_normal_recovers_toward_default(self):
        controller = controller_for([100])
        assert controller.next_batch_size(1, MemoryStatus.NORMAL) == 2
        assert controller.next_batch_size(5, MemoryStatus.NORMAL) == 6
        assert controller.next_batch_size(9, MemoryStatus.NORMAL) == 10
        assert controller.next_batch_size(10, MemoryStatus.NORMAL) == 10


class TestRunAdaptive:
    @pytest.mark.asyncio
    async def test_normal_memory_uses_default_batches(self):
        controller = controller_for([100])
        seen = []

        async def body(batch, params: AdaptiveParams):
            seen.append(list(batch))
            return len(batch)

        results = await controller.run_adaptive("embed", list(range(25)), body)

        assert [len(b) for b in seen] == [10, 10, 5]
        assert sum(seen, []) == list(range(25))
        assert results == [10, 10, 5]

    @pytest.mark.asyncio
    async def test_critical_shrinks_and_pauses(self):
        sleep = AsyncMock()
        controller = controller_for([1500, 100, 100], sleep=sleep, critical_pause=5.0)
        sizes = []
        statuses = []

        async def body(batch, params):
            sizes.append(len(batch))
            statuses.append(params.memory_status)
            return None

        with patch("docingest.monitoring.memory.gc.collect", return_value=0) as collect:
            await controller.run_adaptive("embed", list(range(12)), body)

        assert sizes[0] == 2
        assert statuses[0] == MemoryStatus.CRITICAL
        assert sizes[1:3] == [3, 4]
        assert sum(sizes) == 12
        collect.assert_called_once()
        sleep.assert_any_await(5.0)

    @pytest.mark.asyncio
    async def test_warning_halves_batch(self):
        controller = controller_for([600])
        sizes = []

        async def body(batch, params):
            sizes.append(len(batch))
            assert params.should_pause is True

        await controller.run_adaptive("embed", list(range(10)), body)

        assert sizes == [5, 2, 1, 1, 1]

    @pytest.mark.asyncio
    async def test_pacing_delay_doubles_under_pressure(self):
        sleep = AsyncMock()
        controller = controller_for([100, 600, 100], sleep=sleep, batch_delay=0.1)

        async def body(batch, params):
            return None

        await controller.run_adaptive("embed", list(range(17)), body)

        # Batches of 10, 5 and 2; no delay after the last one
        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_body_errors_propagate(self):
        controller = controller_for([100])

        async def body(batch, params):
            raise RuntimeError("embedding failed")

        with pytest.raises(RuntimeError, match="embedding failed"):
            await controller.run_adaptive("embed", list(range(5)), body)

    @pytest.mark.asyncio
    async def test_initial_batch_size(self):
        controller = controller_for([100])
        sizes = []

        async def body(batch, params):
            sizes.append(len(batch))

        await controller.run_adaptive("embed", list(range(6)), body, initial_batch_size=4)

        # Adjusted before the first batch, like every other batch
        assert sizes == [5, 1]

    def test_invalid_thresholds(self):
        with pytest.raises(ValueError):
            MemoryController(source=FakeMemorySource(), warning_threshold=0.6, critical_threshold=0.5)
