"""Tests for the resource governor."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from feed_poller.polling.governor import GovernorAction, ResourceGovernor, decide


class TestDecide:
    @pytest.mark.parametrize(
        "rss,expected",
        [
            (100.0, GovernorAction.CONTINUE),
            (280.0, GovernorAction.CONTINUE),
            (281.0, GovernorAction.SOFT_CLEANUP),
            (350.0, GovernorAction.SOFT_CLEANUP),
            (351.0, GovernorAction.HARD_EXIT),
        ],
    )
    def test_thresholds(self, rss, expected):
        assert decide(rss, 280.0, 350.0) == expected


class TestResourceGovernor:
    @pytest.mark.asyncio
    async def test_continue_does_nothing(self, polling_config):
        pool = AsyncMock()
        exit_fn = MagicMock()
        governor = ResourceGovernor(
            polling_config, pools=[pool], sampler=lambda: 120.0, exit_fn=exit_fn
        )

        action = await governor.check()

        assert action == GovernorAction.CONTINUE
        pool.recycle.assert_not_awaited()
        exit_fn.assert_not_called()

    @pytest.mark.asyncio
    async def test_soft_cleanup_recycles_pools(self, polling_config):
        pool = AsyncMock()
        governor = ResourceGovernor(polling_config, sampler=lambda: 300.0, exit_fn=MagicMock())
        governor.register_pool(pool)

        with patch("feed_poller.polling.governor.gc.collect") as collect:
            action = await governor.check()

        assert action == GovernorAction.SOFT_CLEANUP
        pool.recycle.assert_awaited_once()
        collect.assert_called_once()

    @pytest.mark.asyncio
    async def test_hard_exit_uses_status_one(self, polling_config):
        exit_fn = MagicMock()
        governor = ResourceGovernor(polling_config, sampler=lambda: 400.0, exit_fn=exit_fn)

        with patch("feed_poller.polling.governor.logging.shutdown") as shutdown:
            action = await governor.check()

        assert action == GovernorAction.HARD_EXIT
        shutdown.assert_called_once()
        exit_fn.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_recycle_failure_is_contained(self, polling_config):
        bad = AsyncMock()
        bad.recycle.side_effect = RuntimeError("close failed")
        good = AsyncMock()
        governor = ResourceGovernor(
            polling_config, pools=[bad, good], sampler=lambda: 300.0, exit_fn=MagicMock()
        )

        await governor.check()

        good.recycle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_maintenance_prunes_and_recycles(self, polling_config, clock):
        sources = AsyncMock()
        sources.prune_failures = AsyncMock(return_value=7)
        pool = AsyncMock()
        governor = ResourceGovernor(
            polling_config, sources=sources, pools=[pool], clock=clock, exit_fn=MagicMock()
        )

        pruned = await governor.run_maintenance()

        assert pruned == 7
        sources.prune_failures.assert_awaited_once_with(
            clock() - timedelta(days=polling_config.failure_retention_days)
        )
        pool.recycle.assert_awaited_once()


class TestMemoryLogging:
    @pytest.mark.asyncio
    async def test_growth_between_checks_warns(self, polling_config):
        samples = iter([100.0, 105.0, 120.0])
        governor = ResourceGovernor(
            polling_config, sampler=lambda: next(samples), exit_fn=MagicMock()
        )

        with patch("feed_poller.polling.governor.logger") as log:
            await governor.check()
            await governor.check()
            log.warning.assert_not_called()
            action = await governor.check()

        assert action == GovernorAction.CONTINUE
        log.warning.assert_called_once()
        assert log.warning.call_args.kwargs == {"growth_mb": 15.0, "rss_mb": 120.0}

    @pytest.mark.asyncio
    async def test_usage_logged_every_n_checks(self, polling_config):
        config = polling_config.model_copy(update={"memory_log_every_ticks": 3})
        governor = ResourceGovernor(config, sampler=lambda: 150.0, exit_fn=MagicMock())

        with patch("feed_poller.polling.governor.logger") as log:
            for _ in range(6):
                await governor.check(queue_size=42)

        usage = [c for c in log.info.call_args_list if c.args == ("Memory usage",)]
        assert len(usage) == 2
        assert usage[0].kwargs == {"rss_mb": 150.0, "queue_size": 42}


class TestUptimeRestart:
    def test_disabled_by_default(self, polling_config, clock):
        restart = MagicMock()
        governor = ResourceGovernor(polling_config, restart_fn=restart, clock=clock)
        clock.advance(days=30)

        assert governor.check_uptime() is False
        restart.assert_not_called()

    def test_restart_requested_once(self, polling_config, clock):
        config = polling_config.model_copy(update={"max_uptime_hours": 12})
        restart = MagicMock()
        exit_fn = MagicMock()
        governor = ResourceGovernor(config, restart_fn=restart, exit_fn=exit_fn, clock=clock)

        clock.advance(hours=11, minutes=59)
        assert governor.check_uptime() is False

        clock.advance(minutes=1)
        assert governor.check_uptime() is True
        assert governor.check_uptime() is True

        restart.assert_called_once_with()
        exit_fn.assert_not_called()
        assert governor.restart_requested is True

    def test_exits_cleanly_without_restart_hook(self, polling_config, clock):
        config = polling_config.model_copy(update={"max_uptime_hours": 1})
        exit_fn = MagicMock()
        governor = ResourceGovernor(config, exit_fn=exit_fn, clock=clock)
        clock.advance(hours=2)

        with patch("feed_poller.polling.governor.logging.shutdown"):
            assert governor.check_uptime() is True

        exit_fn.assert_called_once_with(0)

    @pytest.mark.asyncio
    async def test_maintenance_checks_uptime(self, polling_config, clock):
        config = polling_config.model_copy(update={"max_uptime_hours": 6})
        restart = MagicMock()
        governor = ResourceGovernor(
            config, pools=[AsyncMock()], restart_fn=restart, clock=clock, exit_fn=MagicMock()
        )

        await governor.run_maintenance()
        restart.assert_not_called()

        clock.advance(hours=6)
        await governor.run_maintenance()
        restart.assert_called_once()
