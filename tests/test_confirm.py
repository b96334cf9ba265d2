"""
Tests for the two-signal bridge confirmation waiter.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from fpc_services.core.fields import field_to_hex
from fpc_services.topup.confirm import ConfirmationConfig, ConfirmationStatus, ConfirmationWaiter

FAST = ConfirmationConfig(initial_poll_sec=0.001, max_poll_sec=0.002)
MESSAGE_HASH = 0x3E55


def balance_reader(*values):
    """Reader returning `values` in order, then repeating the last one. Exceptions are raised."""
    remaining = list(values)
    calls = {"n": 0}

    async def read():
        calls["n"] += 1
        value = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(value, Exception):
            raise value
        return value

    read.calls = calls
    return read


def message_node(*answers):
    node = MagicMock()
    node.is_l1_to_l2_message_ready = AsyncMock(side_effect=list(answers) + [answers[-1]] * 1000)
    return node


class TestBalanceSignal:
    """Balance growth over baseline."""

    @pytest.mark.asyncio
    async def test_confirms_on_growth(self):
        waiter = ConfirmationWaiter(balance_reader(10, 10, 12), None, FAST)
        result = await waiter.wait(10, None, timeout_sec=5)
        assert result.status is ConfirmationStatus.CONFIRMED
        assert result.confirmed
        assert result.signal == "balance"
        assert result.observed_delta == 2
        assert result.max_observed_balance == 12
        assert result.attempts == 3
        assert result.message_check_attempted is False

    @pytest.mark.asyncio
    async def test_read_errors_are_retried(self):
        reader = balance_reader(RuntimeError("node down"), RuntimeError("node down"), 11)
        result = await ConfirmationWaiter(reader, None, FAST).wait(10, None, timeout_sec=5)
        assert result.status is ConfirmationStatus.CONFIRMED
        assert result.poll_errors == 2
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_all_reads_failing_times_out_without_raising(self):
        reader = balance_reader(RuntimeError("node down"))
        result = await ConfirmationWaiter(reader, None, FAST).wait(10, None, timeout_sec=0.05)
        assert result.status is ConfirmationStatus.TIMEOUT
        assert result.poll_errors == result.attempts
        assert result.poll_errors >= 1
        assert result.observed_delta == 0

    @pytest.mark.asyncio
    async def test_decrease_is_not_confirmation(self):
        result = await ConfirmationWaiter(balance_reader(8, 9), None, FAST).wait(10, None, timeout_sec=0.05)
        assert result.status is ConfirmationStatus.TIMEOUT
        assert result.last_observed_balance == 9
        assert result.max_observed_balance == 10
        assert result.observed_delta == 0


class TestMessageSignal:
    """L1-to-L2 message readiness."""

    @pytest.mark.asyncio
    async def test_confirms_on_message_ready(self):
        node = message_node(False, True)
        result = await ConfirmationWaiter(balance_reader(10), node, FAST).wait(10, MESSAGE_HASH, timeout_sec=5)
        assert result.status is ConfirmationStatus.CONFIRMED
        assert result.signal == "message"
        assert result.message_ready is True
        assert result.observed_delta == 0
        node.is_l1_to_l2_message_ready.assert_awaited_with(MESSAGE_HASH, for_public_consumption=False)

    @pytest.mark.asyncio
    async def test_hex_hash_accepted(self):
        node = message_node(True)
        result = await ConfirmationWaiter(balance_reader(10), node, FAST).wait(
            10, field_to_hex(MESSAGE_HASH), timeout_sec=5
        )
        assert result.signal == "message"
        assert node.is_l1_to_l2_message_ready.await_args.args[0] == MESSAGE_HASH

    @pytest.mark.asyncio
    async def test_public_consumption_flag_forwarded(self):
        node = message_node(True)
        config = ConfirmationConfig(initial_poll_sec=0.001, max_poll_sec=0.002, for_public_consumption=True)
        await ConfirmationWaiter(balance_reader(10), node, config).wait(10, MESSAGE_HASH, timeout_sec=5)
        node.is_l1_to_l2_message_ready.assert_awaited_with(MESSAGE_HASH, for_public_consumption=True)

    @pytest.mark.asyncio
    async def test_message_failure_leaves_balance_polling(self):
        node = MagicMock()
        node.is_l1_to_l2_message_ready = AsyncMock(side_effect=RuntimeError("method missing"))
        result = await ConfirmationWaiter(balance_reader(10, 10, 15), node, FAST).wait(
            10, MESSAGE_HASH, timeout_sec=5
        )
        assert result.status is ConfirmationStatus.CONFIRMED
        assert result.signal == "balance"
        assert result.message_check_attempted is True
        assert result.message_check_failed is True
        assert node.is_l1_to_l2_message_ready.await_count == 1

    @pytest.mark.asyncio
    async def test_invalid_hash_disables_message_signal(self):
        node = message_node(True)
        result = await ConfirmationWaiter(balance_reader(10), node, FAST).wait(10, "0x1234", timeout_sec=0.02)
        assert result.status is ConfirmationStatus.TIMEOUT
        assert result.message_check_failed is True
        node.is_l1_to_l2_message_ready.assert_not_awaited()


class TestAbortAndTimeout:
    @pytest.mark.asyncio
    async def test_timeout(self):
        result = await ConfirmationWaiter(balance_reader(10), None, FAST).wait(10, None, timeout_sec=0.03)
        assert result.status is ConfirmationStatus.TIMEOUT
        assert result.signal is None
        assert result.attempts >= 1

    @pytest.mark.asyncio
    async def test_preset_abort_returns_immediately(self):
        abort = asyncio.Event()
        abort.set()
        reader = balance_reader(10)
        result = await ConfirmationWaiter(reader, None, FAST).wait(10, None, timeout_sec=5, abort=abort)
        assert result.status is ConfirmationStatus.ABORTED
        assert result.attempts == 0
        assert reader.calls["n"] == 0

    @pytest.mark.asyncio
    async def test_abort_during_wait(self):
        abort = asyncio.Event()
        asyncio.get_running_loop().call_later(0.02, abort.set)
        result = await ConfirmationWaiter(balance_reader(10), None, FAST).wait(10, None, timeout_sec=5, abort=abort)
        assert result.status is ConfirmationStatus.ABORTED
        assert result.elapsed < 5

    @pytest.mark.asyncio
    async def test_pollers_stop_after_wait(self):
        reader = balance_reader(10)
        await ConfirmationWaiter(reader, None, FAST).wait(10, None, timeout_sec=0.02)
        calls_after = reader.calls["n"]
        await asyncio.sleep(0.02)
        assert reader.calls["n"] == calls_after


class TestBackoff:
    @pytest.mark.asyncio
    async def test_delay_grows_and_caps(self):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)
            await asyncio.sleep(0)

        config = ConfirmationConfig(initial_poll_sec=1.0, max_poll_sec=3.0)
        waiter = ConfirmationWaiter(balance_reader(10, 10, 10, 10, 10, 11), None, config, sleep=fake_sleep)
        result = await waiter.wait(10, None, timeout_sec=5)
        assert result.confirmed
        assert delays == [1.0, 1.5, 2.25, 3.0, 3.0]

    @pytest.mark.parametrize("initial,maximum", [(0, 1), (2, 1)])
    def test_config_validation(self, initial, maximum):
        with pytest.raises(ValueError):
            ConfirmationConfig(initial_poll_sec=initial, max_poll_sec=maximum)
