from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from conftest import OTHER_USER, USER, buy, sell
from folio.core.errors import InsufficientSharesError, UnauthorizedError, ValidationError
from folio.providers.static import StaticMarketData
from folio.services.market_data import MarketDataService, QuoteCache
from folio.services.tax import TaxService


@pytest.fixture
def tax(store, settings) -> TaxService:
    return TaxService(store, settings=settings)


@pytest.mark.asyncio
async def test_report_classifies_long_term_sale(engine, portfolios, tax):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 50, 150, date(2022, 5, 1)))
    await engine.apply_transaction(USER, portfolio.id, sell("AAPL", 50, 200, date(2024, 6, 1)))

    report = await tax.generate_report(USER, portfolio.id, 2024)

    assert [gain.gain for gain in report.long_term_gains] == [Decimal("2500")]
    assert report.short_term_gains == []
    assert report.total_long_term_gain == Decimal("2500")
    assert report.total_short_term_gain == Decimal("0")
    assert report.total_gain == Decimal("2500")


@pytest.mark.asyncio
async def test_report_only_includes_sales_of_the_year(engine, portfolios, tax):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("MSFT", 10, 100, date(2023, 1, 2)))
    await engine.apply_transaction(USER, portfolio.id, sell("MSFT", 4, 120, date(2023, 6, 1)))
    await engine.apply_transaction(USER, portfolio.id, buy("MSFT", 10, 200, date(2023, 7, 1)))
    await engine.apply_transaction(USER, portfolio.id, sell("MSFT", 8, 150, date(2024, 3, 1)))
    await engine.apply_transaction(USER, portfolio.id, sell("MSFT", 1, 150, date(2025, 3, 1)))

    report = await tax.generate_report(USER, portfolio.id, 2024)

    # the 2023 sale already consumed 4 of the January lot
    assert [(g.quantity, g.cost_basis) for g in report.long_term_gains] == [(Decimal("6"), Decimal("600"))]
    assert [(g.quantity, g.cost_basis) for g in report.short_term_gains] == [(Decimal("2"), Decimal("400"))]
    assert report.total_gain == Decimal("200")
    assert (await tax.generate_report(USER, portfolio.id, 2022)).total_gain == Decimal("0")


@pytest.mark.asyncio
async def test_report_validates_year_and_owner(portfolios, tax):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    with pytest.raises(ValidationError):
        await tax.generate_report(USER, portfolio.id, 10000)
    with pytest.raises(UnauthorizedError):
        await tax.generate_report(OTHER_USER, portfolio.id, 2024)


@pytest.mark.asyncio
async def test_sale_preview_does_not_touch_lots(engine, portfolios, tax):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 100, 10, date(2023, 1, 2)))
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 50, 20, date(2024, 6, 1)))

    allocations = await tax.allocate_sale(USER, portfolio.id, "aapl", "120", "15", sale_date=date(2024, 12, 1))

    assert [(a.quantity, a.cost_basis, a.proceeds, a.is_long_term) for a in allocations] == [
        (Decimal("100"), Decimal("1000"), Decimal("1500"), True),
        (Decimal("20"), Decimal("400"), Decimal("300"), False),
    ]
    assert sum(a.gain for a in allocations) == Decimal("400")
    lots = await engine.list_tax_lots(USER, portfolio.id, "AAPL")
    assert [lot.quantity for lot in lots] == [Decimal("100"), Decimal("50")]

    with pytest.raises(InsufficientSharesError):
        await tax.allocate_sale(USER, portfolio.id, "AAPL", "151", "15")
    with pytest.raises(ValidationError):
        await tax.allocate_sale(USER, portfolio.id, "AAPL", "0", "15")


@pytest.mark.asyncio
async def test_sale_preview_nets_commission_across_lots(engine, portfolios, tax):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    for day in (date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4)):
        await engine.apply_transaction(USER, portfolio.id, buy("X", 1, 10, day))

    allocations = await tax.allocate_sale(
        USER, portfolio.id, "X", "3", "10", sale_date=date(2024, 2, 1), commission="1"
    )
    assert sum(a.proceeds for a in allocations) == Decimal("29")


@pytest.mark.asyncio
async def test_tax_loss_opportunities(engine, portfolios, store, settings, tax):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))
    await engine.apply_transaction(USER, portfolio.id, buy("MSFT", 5, 200, date(2024, 1, 2)))
    await engine.apply_transaction(USER, portfolio.id, buy("KO", 10, 50, date(2024, 1, 2)))
    prices = {"AAPL": Decimal("80"), "MSFT": Decimal("190"), "KO": Decimal("60")}

    everything = await tax.tax_loss_opportunities(USER, portfolio.id, prices)
    assert [(o.symbol, o.loss_percent) for o in everything] == [
        ("AAPL", Decimal("-20")),
        ("MSFT", Decimal("-5")),
    ]
    assert everything[0].unrealized_loss == Decimal("-200")

    deep = await tax.tax_loss_opportunities(USER, portfolio.id, prices, min_loss_pct="10")
    assert [o.symbol for o in deep] == ["AAPL"]

    with pytest.raises(ValidationError):
        await tax.tax_loss_opportunities(USER, portfolio.id, prices, min_loss_pct="-1")
    with pytest.raises(ValidationError):
        await tax.tax_loss_opportunities(USER, portfolio.id)

    market = MarketDataService(StaticMarketData({"MSFT": "150"}), cache=QuoteCache(60), settings=settings)
    quoted = await TaxService(store, market, settings).tax_loss_opportunities(USER, portfolio.id)
    assert [(o.symbol, o.current_value) for o in quoted] == [("MSFT", Decimal("750"))]
