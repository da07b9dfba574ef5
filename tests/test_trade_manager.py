"""
Tests for the trade lifecycle and its effect on the balance.
"""

from decimal import Decimal

import pytest

from candle_bot.data.models import TradeStatus
from candle_bot.exceptions import InsufficientBalanceError, MarketDataError, PartialFailureError

from conftest import TEST_SYMBOL, make_coin


async def balance_of(store):
    return (await store.get_balance()).amount


@pytest.mark.asyncio
async def test_open_trade_debits_balance(trade_manager, store):
    trade = await trade_manager.open_trade(make_coin())

    assert trade.id is not None
    assert trade.status == TradeStatus.OPEN
    assert trade.entry_price == Decimal("100")
    assert trade.quantity == Decimal("1")
    assert trade.close_forcefully is False
    assert trade.exit_price is None
    assert await balance_of(store) == Decimal("900")
    assert len(await store.get_open_trades()) == 1


@pytest.mark.asyncio
async def test_quantity_uses_live_price(trade_manager, market_data):
    market_data.prices[TEST_SYMBOL] = Decimal("400")

    trade = await trade_manager.open_trade(make_coin(price="100"))

    assert trade.entry_price == Decimal("400")
    assert trade.quantity == Decimal("0.25")


@pytest.mark.asyncio
async def test_insufficient_balance_leaves_state_untouched(trade_manager, store):
    await store.set_balance(Decimal("50"))

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await trade_manager.open_trade(make_coin())

    assert exc_info.value.required == Decimal("100")
    assert exc_info.value.available == Decimal("50")
    assert await balance_of(store) == Decimal("50")
    assert store.trades == {}


@pytest.mark.asyncio
async def test_zero_price_does_not_open_trade(trade_manager, store, market_data):
    market_data.prices[TEST_SYMBOL] = Decimal("0")

    assert await trade_manager.open_trade(make_coin()) is None
    assert store.trades == {}
    assert await balance_of(store) == Decimal("1000")


@pytest.mark.asyncio
async def test_market_data_failure_propagates(trade_manager, store, market_data):
    market_data.fail = True

    with pytest.raises(MarketDataError):
        await trade_manager.open_trade(make_coin())
    assert store.trades == {}


@pytest.mark.asyncio
async def test_same_symbol_can_hold_several_trades(trade_manager, store):
    await trade_manager.open_trade(make_coin())
    await trade_manager.open_trade(make_coin())

    assert len(await store.get_open_trades()) == 2
    assert await balance_of(store) == Decimal("800")


@pytest.mark.asyncio
async def test_take_profit_closes_trade(trade_manager, store, market_data):
    trade = await trade_manager.open_trade(make_coin())
    market_data.prices[TEST_SYMBOL] = Decimal("106")

    closed = await trade_manager.evaluate_open_trades()

    assert len(closed) == 1
    result = closed[0]
    assert result.id == trade.id
    assert result.status == TradeStatus.CLOSED
    assert result.exit_price == Decimal("106")
    assert result.exit_time is not None
    assert result.profit_loss == Decimal("6") * trade.quantity
    assert result.profit_loss_percentage == Decimal("6")
    assert await balance_of(store) == Decimal("1006")
    assert await store.get_open_trades() == []


@pytest.mark.asyncio
async def test_stop_loss_closes_trade(trade_manager, store, market_data):
    await trade_manager.open_trade(make_coin())
    market_data.prices[TEST_SYMBOL] = Decimal("96")

    closed = await trade_manager.evaluate_open_trades()

    assert [t.status for t in closed] == [TradeStatus.STOP_LOSS]
    assert closed[0].profit_loss == Decimal("-4")
    assert await balance_of(store) == Decimal("996")


@pytest.mark.asyncio
async def test_exact_thresholds_trigger_exit(trade_manager, store, market_data):
    await trade_manager.open_trade(make_coin())
    market_data.prices[TEST_SYMBOL] = Decimal("105")
    assert [t.status for t in await trade_manager.evaluate_open_trades()] == [TradeStatus.CLOSED]

    market_data.prices[TEST_SYMBOL] = Decimal("100")
    await trade_manager.open_trade(make_coin())
    market_data.prices[TEST_SYMBOL] = Decimal("97")
    assert [t.status for t in await trade_manager.evaluate_open_trades()] == [TradeStatus.STOP_LOSS]


@pytest.mark.asyncio
async def test_trade_within_band_stays_open(trade_manager, store, market_data):
    await trade_manager.open_trade(make_coin())
    market_data.prices[TEST_SYMBOL] = Decimal("102")

    assert await trade_manager.evaluate_open_trades() == []
    assert len(await store.get_open_trades()) == 1
    assert await balance_of(store) == Decimal("900")


@pytest.mark.asyncio
async def test_forced_close_ignores_profit(trade_manager, store, market_data):
    trade = await trade_manager.open_trade(make_coin())
    assert await trade_manager.force_close(TEST_SYMBOL) == 1
    market_data.prices[TEST_SYMBOL] = Decimal("99")

    closed = await trade_manager.evaluate_open_trades()

    assert len(closed) == 1
    assert closed[0].id == trade.id
    assert closed[0].status == TradeStatus.CLOSED
    assert closed[0].profit_loss == Decimal("-1")
    assert await balance_of(store) == Decimal("999")


@pytest.mark.asyncio
async def test_zero_live_price_skips_evaluation(trade_manager, store, market_data):
    await trade_manager.open_trade(make_coin())
    await trade_manager.force_close(TEST_SYMBOL)
    market_data.prices[TEST_SYMBOL] = Decimal("0")

    assert await trade_manager.evaluate_open_trades() == []
    assert len(await store.get_open_trades()) == 1


@pytest.mark.asyncio
async def test_closed_trade_cannot_be_closed_again(trade_manager, market_data):
    trade = await trade_manager.open_trade(make_coin())
    await trade_manager.close_trade(trade, Decimal("110"), TradeStatus.CLOSED)

    with pytest.raises(ValueError):
        await trade_manager.close_trade(trade, Decimal("120"), TradeStatus.CLOSED)


@pytest.mark.asyncio
async def test_close_into_open_status_rejected(trade_manager):
    trade = await trade_manager.open_trade(make_coin())

    with pytest.raises(ValueError):
        await trade_manager.close_trade(trade, Decimal("110"), TradeStatus.OPEN)


@pytest.mark.asyncio
async def test_balance_failure_after_insert_is_reported(trade_manager, store):
    await trade_manager.ledger.initialize()
    store.fail_adjust_balance = True

    with pytest.raises(PartialFailureError) as exc_info:
        await trade_manager.open_trade(make_coin())

    assert exc_info.value.trade.id in store.trades
    assert await balance_of(store) == Decimal("1000")


@pytest.mark.asyncio
async def test_credit_failure_after_close_is_reported(trade_manager, store, market_data):
    trade = await trade_manager.open_trade(make_coin())
    market_data.prices[TEST_SYMBOL] = Decimal("106")
    store.fail_adjust_balance = True

    with pytest.raises(PartialFailureError) as exc_info:
        await trade_manager.evaluate_open_trades()

    assert exc_info.value.trade.id == trade.id
    assert store.trades[trade.id].status == TradeStatus.CLOSED
    assert store.trades[trade.id].exit_price == Decimal("106")
    assert await balance_of(store) == Decimal("900")


@pytest.mark.asyncio
async def test_balance_invariant_over_mixed_sequence(trade_manager, store, market_data, trading_config):
    symbols = ["BTC-USDT", "ETH-USDT", "SOL-USDT"]
    market_data.prices.update({"BTC-USDT": Decimal("100"), "ETH-USDT": Decimal("50"), "SOL-USDT": Decimal("20")})

    for symbol in symbols:
        await trade_manager.open_trade(make_coin(symbol))
    await trade_manager.open_trade(make_coin("BTC-USDT"))

    market_data.prices.update({"BTC-USDT": Decimal("110"), "ETH-USDT": Decimal("48"), "SOL-USDT": Decimal("20.5")})
    await trade_manager.evaluate_open_trades()

    trades = list(store.trades.values())
    open_amount = sum(trading_config.trade_amount for t in trades if t.is_open)
    returned = sum(trading_config.trade_amount + t.profit_loss for t in trades if not t.is_open)
    expected = trading_config.initial_balance - open_amount + returned

    assert any(t.is_open for t in trades)
    assert any(not t.is_open for t in trades)
    assert await balance_of(store) == expected


@pytest.mark.asyncio
async def test_summary(trade_manager, market_data):
    await trade_manager.open_trade(make_coin())
    await trade_manager.open_trade(make_coin())
    market_data.prices[TEST_SYMBOL] = Decimal("106")
    await trade_manager.evaluate_open_trades()
    await trade_manager.open_trade(make_coin())

    summary = await trade_manager.get_summary()

    assert summary.open_trades == 1
    assert summary.closed_trades == 2
    assert summary.stop_loss_trades == 0
    assert summary.balance == Decimal("912")
    assert summary.realized_pnl == Decimal("12")


@pytest.mark.asyncio
async def test_summary_on_empty_store_does_not_create_balance(trade_manager, store):
    summary = await trade_manager.get_summary()

    assert summary.balance == Decimal("1000")
    assert summary.open_trades == 0
    assert store.balance is None
