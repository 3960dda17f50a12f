"""Return analytics over snapshots and transactions.

All figures are computed from stored data and nothing is written back. Money
stays in ``Decimal``; only the IRR solver works in floats, since it needs
fractional powers over many iterations.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Sequence

from folio.core.errors import (
    InsufficientCashFlowsError,
    InsufficientDataError,
    ValidationError,
)
from folio.models import PerformanceSnapshot, Transaction, TransactionType
from folio.money import HUNDRED, ONE, ZERO, div, quantize
from folio.repositories.base import Store, UnitOfWork, get_owned_portfolio

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = Decimal("365.25")
SNAPSHOT_WINDOW_DAYS = 7
IRR_GUESS = 0.1
IRR_MAX_ITERATIONS = 100
IRR_TOLERANCE = 1e-4
IRR_MIN_RATE = -0.99
IRR_MAX_RATE = 10.0
CASH_FLOW_TYPES = (TransactionType.BUY, TransactionType.SELL)


@dataclass(frozen=True)
class CashFlow:
    date: date
    amount: Decimal


@dataclass(frozen=True)
class TWRResult:
    start_date: date
    end_date: date
    twr: Decimal
    twr_percent: Decimal
    annualized_twr: Decimal
    annualized_twr_percent: Decimal
    num_periods: int
    starting_value: Decimal
    ending_value: Decimal


@dataclass(frozen=True)
class MWRResult:
    start_date: date
    end_date: date
    mwr: Decimal
    mwr_percent: Decimal
    annualized_mwr: Decimal
    annualized_mwr_percent: Decimal
    total_cash_flow: Decimal
    starting_value: Decimal
    ending_value: Decimal


@dataclass(frozen=True)
class AnnualizedReturn:
    start_date: date
    end_date: date
    starting_value: Decimal
    ending_value: Decimal
    total_return: Decimal
    total_return_pct: Decimal
    annualized_return: Decimal
    annualized_return_pct: Decimal
    years: Decimal


@dataclass(frozen=True)
class BenchmarkComparison:
    start_date: date
    end_date: date
    benchmark_symbol: str
    portfolio_return: Decimal
    benchmark_return: Decimal
    portfolio_annualized: Decimal
    benchmark_annualized: Decimal
    alpha: Decimal
    outperformance: Decimal


@dataclass(frozen=True)
class PerformanceMetrics:
    start_date: date
    end_date: date
    starting_value: Decimal
    ending_value: Decimal
    total_return: Decimal
    total_return_pct: Decimal
    time_weighted_return: Decimal
    money_weighted_return: Decimal
    annualized_return: Decimal
    total_deposits: Decimal
    total_withdrawals: Decimal
    net_cash_flow: Decimal
    years: Decimal


def years_between(start: date, end: date) -> Decimal:
    return div((end - start).days, DAYS_PER_YEAR)


def annualize(growth: Decimal, years: Decimal) -> Decimal:
    """``growth ** (1 / years) - 1`` where ``growth`` is ``1 + return``."""

    if years <= 0:
        return ZERO
    if growth <= 0:
        return -ONE
    return quantize(growth ** (ONE / years) - ONE)


def external_flow(tx: Transaction) -> Decimal:
    """Cash entering the portfolio (positive) or leaving it (negative)."""

    kind = TransactionType(tx.type)
    if kind is TransactionType.BUY:
        return tx.base_total_cost
    if kind is TransactionType.SELL:
        return -tx.base_proceeds
    return ZERO


def flow_between(transactions: Iterable[Transaction], after: date, through: date) -> Decimal:
    """Net external flow dated in ``(after, through]``."""

    return sum((external_flow(tx) for tx in transactions if after < tx.date <= through), ZERO)


def compute_twr(
    snapshots: Sequence[PerformanceSnapshot], transactions: Sequence[Transaction]
) -> tuple[Decimal, int]:
    """Chain sub-period returns between consecutive snapshots.

    Returns the cumulative return and the number of chained periods. Periods that
    start from a non-positive value are skipped.
    """

    if len(snapshots) < 2:
        raise InsufficientDataError("need at least 2 snapshots for TWR calculation")
    ordered = sorted(snapshots, key=lambda s: s.date)
    product = ONE
    periods = 0
    for previous, current in zip(ordered, ordered[1:]):
        if previous.total_value <= 0:
            continue
        flow = flow_between(transactions, previous.date, current.date)
        period = div(current.total_value - flow, previous.total_value) - ONE
        product *= ONE + period
        periods += 1
    return product - ONE, periods


def build_cash_flows(
    transactions: Iterable[Transaction],
    start: date,
    end: date,
    starting_value: Decimal,
    ending_value: Decimal,
) -> list[CashFlow]:
    flows = [CashFlow(start, -starting_value)]
    for tx in transactions:
        if not (start <= tx.date <= end):
            continue
        amount = -external_flow(tx)
        if amount:
            flows.append(CashFlow(tx.date, amount))
    flows.append(CashFlow(end, ending_value))
    return sorted(flows, key=lambda flow: flow.date)


def solve_irr(
    flows: Sequence[CashFlow],
    *,
    guess: float = IRR_GUESS,
    max_iterations: int = IRR_MAX_ITERATIONS,
    tolerance: float = IRR_TOLERANCE,
) -> Decimal:
    """Newton-Raphson on the annual rate that zeroes the NPV of ``flows``."""

    if len(flows) < 2:
        raise InsufficientCashFlowsError("insufficient cash flows for MWR calculation")
    base = flows[0].date
    points = [((flow.date - base).days / 365.25, float(flow.amount)) for flow in flows]
    rate = guess
    for _ in range(max_iterations):
        npv = 0.0
        derivative = 0.0
        for years, amount in points:
            factor = math.pow(1 + rate, years)
            npv += amount / factor
            derivative -= years * amount / (factor * (1 + rate))
        if abs(npv) < tolerance:
            break
        if derivative == 0:
            raise InsufficientCashFlowsError("cash flows do not determine a rate of return")
        rate = min(max(rate - npv / derivative, IRR_MIN_RATE), IRR_MAX_RATE)
    else:
        logger.debug("IRR did not converge after %d iterations; last rate %s", max_iterations, rate)
    return quantize(Decimal(str(rate)))


def snapshot_near(snapshots: Sequence[PerformanceSnapshot], target: date) -> PerformanceSnapshot:
    """Exact snapshot for ``target``, else the closest one within a week."""

    best: PerformanceSnapshot | None = None
    for snapshot in snapshots:
        distance = abs((snapshot.date - target).days)
        if distance == 0:
            return snapshot
        if distance > SNAPSHOT_WINDOW_DAYS:
            continue
        if best is None or distance < abs((best.date - target).days):
            best = snapshot
    if best is None:
        raise InsufficientDataError(f"no snapshot found near date {target}")
    return best


def _pct(value: Decimal) -> Decimal:
    return quantize(value * HUNDRED, 8)


def _return_pct(start_value: Decimal, end_value: Decimal) -> Decimal:
    if start_value == 0:
        return ZERO
    return _pct(div(end_value - start_value, start_value))


class AnalyticsService:
    def __init__(self, store: Store, market_data=None) -> None:
        self.store = store
        self.market_data = market_data

    async def time_weighted_return(
        self, user_id: str, portfolio_id: uuid.UUID, start: date, end: date
    ) -> TWRResult:
        _check_range(start, end)
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            snapshots = await uow.snapshots.find_snapshots_in_range(portfolio.id, start, end)
            transactions = await _cash_flow_transactions(uow, portfolio.id, start, end)
        twr, periods = compute_twr(snapshots, transactions)
        annualized = annualize(ONE + twr, years_between(start, end))
        ordered = sorted(snapshots, key=lambda s: s.date)
        return TWRResult(
            start_date=start,
            end_date=end,
            twr=quantize(twr),
            twr_percent=_pct(twr),
            annualized_twr=annualized,
            annualized_twr_percent=_pct(annualized),
            num_periods=periods,
            starting_value=ordered[0].total_value,
            ending_value=ordered[-1].total_value,
        )

    async def money_weighted_return(
        self, user_id: str, portfolio_id: uuid.UUID, start: date, end: date
    ) -> MWRResult:
        _check_range(start, end)
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            window = await _snapshot_window(uow, portfolio.id, start, end)
            transactions = await _cash_flow_transactions(uow, portfolio.id, start, end)
        starting = snapshot_near(window, start).total_value
        ending = snapshot_near(window, end).total_value
        flows = build_cash_flows(transactions, start, end, starting, ending)
        mwr = solve_irr(flows)
        total_flow = sum((flow.amount for flow in flows[1:-1]), ZERO)
        return MWRResult(
            start_date=start,
            end_date=end,
            mwr=mwr,
            mwr_percent=_pct(mwr),
            annualized_mwr=mwr,
            annualized_mwr_percent=_pct(mwr),
            total_cash_flow=total_flow,
            starting_value=starting,
            ending_value=ending,
        )

    async def annualized_return(
        self, user_id: str, portfolio_id: uuid.UUID, start: date, end: date
    ) -> AnnualizedReturn:
        _check_range(start, end)
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            window = await _snapshot_window(uow, portfolio.id, start, end)
        return _annualized(window, start, end)

    async def compare_to_benchmark(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        benchmark_symbol: str,
        start: date,
        end: date,
    ) -> BenchmarkComparison:
        _check_range(start, end)
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            window = await _snapshot_window(uow, portfolio.id, start, end)
        portfolio_return = _annualized(window, start, end)

        if self.market_data is None:
            raise ValidationError("no market data source configured")
        symbol = benchmark_symbol.strip().upper()
        bars = sorted(await self.market_data.get_historical(symbol, start, end), key=lambda bar: bar.date)
        if len(bars) < 2 or bars[0].close <= 0:
            raise InsufficientDataError(f"insufficient benchmark data for {symbol}")
        benchmark = div(bars[-1].close - bars[0].close, bars[0].close)
        benchmark_annualized = _pct(annualize(ONE + benchmark, portfolio_return.years))
        return BenchmarkComparison(
            start_date=start,
            end_date=end,
            benchmark_symbol=symbol,
            portfolio_return=portfolio_return.total_return_pct,
            benchmark_return=_pct(benchmark),
            portfolio_annualized=portfolio_return.annualized_return_pct,
            benchmark_annualized=benchmark_annualized,
            alpha=portfolio_return.annualized_return_pct - benchmark_annualized,
            outperformance=portfolio_return.total_return_pct - _pct(benchmark),
        )

    async def performance_metrics(
        self, user_id: str, portfolio_id: uuid.UUID, start: date, end: date
    ) -> PerformanceMetrics:
        """Summary of returns and flows; TWR and MWR read as zero when undetermined."""

        _check_range(start, end)
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            window = await _snapshot_window(uow, portfolio.id, start, end)
            transactions = await _cash_flow_transactions(uow, portfolio.id, start, end)
        summary = _annualized(window, start, end)
        in_range = [s for s in window if start <= s.date <= end]

        try:
            twr_percent = _pct(compute_twr(in_range, transactions)[0])
        except InsufficientDataError:
            twr_percent = ZERO
        flows = build_cash_flows(transactions, start, end, summary.starting_value, summary.ending_value)
        try:
            mwr_percent = _pct(solve_irr(flows))
        except InsufficientDataError:
            mwr_percent = ZERO

        deposits = sum((tx.base_total_cost for tx in transactions if tx.type == TransactionType.BUY.value), ZERO)
        withdrawals = sum((tx.base_proceeds for tx in transactions if tx.type == TransactionType.SELL.value), ZERO)
        return PerformanceMetrics(
            start_date=start,
            end_date=end,
            starting_value=summary.starting_value,
            ending_value=summary.ending_value,
            total_return=summary.total_return,
            total_return_pct=summary.total_return_pct,
            time_weighted_return=twr_percent,
            money_weighted_return=mwr_percent,
            annualized_return=summary.annualized_return_pct,
            total_deposits=deposits,
            total_withdrawals=withdrawals,
            net_cash_flow=sum((flow.amount for flow in flows[1:-1]), ZERO),
            years=summary.years,
        )


def _check_range(start: date, end: date) -> None:
    if end < start:
        raise ValidationError("end date must not be before start date")


def _annualized(window: Sequence[PerformanceSnapshot], start: date, end: date) -> AnnualizedReturn:
    starting = snapshot_near(window, start).total_value
    ending = snapshot_near(window, end).total_value
    years = years_between(start, end)
    annualized = annualize(div(ending, starting), years) if starting else ZERO
    return AnnualizedReturn(
        start_date=start,
        end_date=end,
        starting_value=starting,
        ending_value=ending,
        total_return=ending - starting,
        total_return_pct=_return_pct(starting, ending),
        annualized_return=annualized,
        annualized_return_pct=_pct(annualized),
        years=quantize(years, 6),
    )


async def _snapshot_window(
    uow: UnitOfWork, portfolio_id: uuid.UUID, start: date, end: date
) -> list[PerformanceSnapshot]:
    margin = timedelta(days=SNAPSHOT_WINDOW_DAYS)
    return await uow.snapshots.find_snapshots_in_range(portfolio_id, start - margin, end + margin)


async def _cash_flow_transactions(
    uow: UnitOfWork, portfolio_id: uuid.UUID, start: date, end: date
) -> list[Transaction]:
    return await uow.transactions.find_by_portfolio_symbol_daterange(
        portfolio_id, None, start, end, types=[t.value for t in CASH_FLOW_TYPES]
    )


__all__ = [
    "AnalyticsService",
    "AnnualizedReturn",
    "BenchmarkComparison",
    "CashFlow",
    "MWRResult",
    "PerformanceMetrics",
    "TWRResult",
    "annualize",
    "build_cash_flows",
    "compute_twr",
    "flow_between",
    "snapshot_near",
    "solve_irr",
    "years_between",
]
