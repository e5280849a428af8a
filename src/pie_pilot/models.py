"""
Core data models for the pie portfolio engine.

This module defines the data structures that flow through a refresh cycle:
instrument metadata, pie holdings, portfolio summaries, allocation analysis
and the final PerformanceMetrics snapshot. Monetary values use Decimal;
trailing price performance uses float because it is derived from market
data closes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")

FETCH_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

PERFORMANCE_FIELDS = (
    "performance_1day",
    "performance_1week",
    "performance_1month",
    "performance_3months",
    "performance_1year",
)


def as_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """
    Convert an API value to Decimal.

    None, booleans and unparseable values fall back to ``default``.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default
    if not result.is_finite():
        return default
    return result


def format_fetch_date(moment: Optional[datetime] = None) -> str:
    """Format a timestamp the way snapshots record fetch dates."""
    return (moment or datetime.now()).strftime(FETCH_DATE_FORMAT)


def return_percentage(total_result: Decimal, total_invested: Decimal) -> Decimal:
    """Result as a percentage of invested capital, 0 when nothing is invested."""
    if total_invested == Decimal("0"):
        return Decimal("0")
    return total_result / total_invested * Decimal("100")


class FailureReason(Enum):
    """Why a stage of a refresh produced no value."""
    NETWORK = "NETWORK"
    AUTHENTICATION = "AUTHENTICATION"
    MALFORMED_DATA = "MALFORMED_DATA"
    MISSING_DATA = "MISSING_DATA"
    MISSING_CREDENTIAL = "MISSING_CREDENTIAL"
    VALIDATION = "VALIDATION"
    TIMEOUT = "TIMEOUT"


class DuplicateCategoryPolicy(Enum):
    """How repeated allocation categories resolve their target percentage."""
    LAST_WINS = "last_wins"
    FIRST_WINS = "first_wins"
    REJECT = "reject"


class ActionType(Enum):
    """Types of logged actions for the refresh log."""
    CONFIG_LOADED = "CONFIG_LOADED"
    CASH_FETCHED = "CASH_FETCHED"
    METADATA_LOADED = "METADATA_LOADED"
    PIES_AGGREGATED = "PIES_AGGREGATED"
    ALLOCATION_ANALYZED = "ALLOCATION_ANALYZED"
    REBALANCE_PLANNED = "REBALANCE_PLANNED"
    REFRESH_COMPLETED = "REFRESH_COMPLETED"
    REFRESH_DEGRADED = "REFRESH_DEGRADED"


@dataclass
class Outcome(Generic[T]):
    """
    Result of a fallible stage: either a value or a typed failure reason.

    Attributes:
        value: The produced value (None on failure)
        reason: Failure reason (None on success)
        detail: Human-readable context for a failure
    """
    value: Optional[T] = None
    reason: Optional[FailureReason] = None
    detail: str = ""

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, reason: FailureReason, detail: str = "") -> "Outcome[T]":
        return cls(reason=reason, detail=detail)

    @property
    def ok(self) -> bool:
        return self.reason is None


@dataclass(frozen=True)
class InstrumentMetadata:
    """
    Reference data for one tradable instrument from the broker catalogue.

    Attributes:
        ticker: Broker ticker (unique key, e.g. AAPL_US_EQ)
        name: Display name
        currency_code: Trading currency
        type: Instrument type (STOCK, ETF, ...)
        added_on: Listing date as reported by the broker
        max_open_quantity: Maximum position size
        min_trade_quantity: Minimum order size
    """
    ticker: str
    name: str = ""
    currency_code: str = ""
    type: str = ""
    added_on: str = ""
    max_open_quantity: Optional[Decimal] = None
    min_trade_quantity: Optional[Decimal] = None

    @classmethod
    def from_api(cls, record: dict) -> "InstrumentMetadata":
        """Build metadata from a catalogue record; requires a ticker."""
        ticker = record.get("ticker")
        if not ticker:
            raise ValueError("instrument record has no ticker")
        max_open = record.get("maxOpenQuantity")
        min_trade = record.get("minTradeQuantity")
        return cls(
            ticker=str(ticker),
            name=str(record.get("name") or ""),
            currency_code=str(record.get("currencyCode") or ""),
            type=str(record.get("type") or ""),
            added_on=str(record.get("addedOn") or ""),
            max_open_quantity=as_decimal(max_open) if max_open is not None else None,
            min_trade_quantity=as_decimal(min_trade) if min_trade is not None else None,
        )


@dataclass
class InstrumentPerformance:
    """
    Market-data enrichment for one instrument.

    Attributes:
        dividend_yield: Dividend yield in percent
        performance_1day .. performance_1year: Trailing price change in
            percent, None when no close exists at the window boundary
    """
    dividend_yield: Decimal = Decimal("0")
    performance_1day: Optional[float] = None
    performance_1week: Optional[float] = None
    performance_1month: Optional[float] = None
    performance_3months: Optional[float] = None
    performance_1year: Optional[float] = None

    @classmethod
    def unavailable(cls) -> "InstrumentPerformance":
        """Enrichment used when market data cannot be fetched."""
        return cls()


@dataclass
class PieInstrument:
    """
    One holding inside one pie, merged with metadata and market data.

    Attributes:
        ticker: Broker ticker
        owned_quantity: Shares owned in this pie
        invested_value: Capital invested at average price
        current_value: Current market value
        result_value: current_value - invested_value
        current_share: Broker-reported current share of the pie
        expected_share: Broker-reported target share of the pie
        issues: Broker-reported issue flag
    """
    ticker: str
    owned_quantity: Decimal
    invested_value: Decimal
    current_value: Decimal
    result_value: Decimal
    current_share: Decimal = Decimal("0")
    expected_share: Decimal = Decimal("0")
    issues: bool = False
    full_name: Optional[str] = None
    currency_code: Optional[str] = None
    type: Optional[str] = None
    added_to_market: Optional[str] = None
    max_open_quantity: Optional[Decimal] = None
    min_trade_quantity: Optional[Decimal] = None
    dividend_yield: Decimal = Decimal("0")
    performance_1day: Optional[float] = None
    performance_1week: Optional[float] = None
    performance_1month: Optional[float] = None
    performance_3months: Optional[float] = None
    performance_1year: Optional[float] = None

    def apply_metadata(self, metadata: InstrumentMetadata) -> None:
        """Copy catalogue fields onto this holding."""
        self.full_name = metadata.name
        self.currency_code = metadata.currency_code
        self.type = metadata.type
        self.added_to_market = metadata.added_on
        self.max_open_quantity = metadata.max_open_quantity
        self.min_trade_quantity = metadata.min_trade_quantity

    def apply_performance(self, performance: InstrumentPerformance) -> None:
        """Copy dividend yield and trailing performance onto this holding."""
        self.dividend_yield = performance.dividend_yield
        for name in PERFORMANCE_FIELDS:
            setattr(self, name, getattr(performance, name))


@dataclass
class PieData:
    """
    One named sub-portfolio with rolled-up totals.

    The name may carry a target allocation suffix, e.g. "Growth (40%)".

    Attributes:
        pie_id: Broker pie identifier
        name: Pie name
        creation_date: Creation date reported by the broker
        dividend_cash_action: Dividend policy (REINVEST, TO_ACCOUNT_CASH, ...)
        instruments: Holdings in broker order
        total_invested: Sum of instrument invested values
        total_result: Sum of instrument result values
        return_percentage: total_result / total_invested * 100 (0 if nothing invested)
        fetch_date: When the pie was fetched
        target_allocation: Target percent from the name or a saved PieAllocation
    """
    name: str
    creation_date: str = ""
    dividend_cash_action: str = "unknown"
    instruments: list[PieInstrument] = field(default_factory=list)
    total_invested: Decimal = Decimal("0")
    total_result: Decimal = Decimal("0")
    return_percentage: Decimal = Decimal("0")
    fetch_date: str = ""
    target_allocation: Optional[Decimal] = None
    pie_id: Optional[str] = None

    def recalculate_totals(self) -> None:
        """Recompute totals from the instrument list."""
        self.total_invested = sum(
            (i.invested_value for i in self.instruments), Decimal("0")
        )
        self.total_result = sum(
            (i.result_value for i in self.instruments), Decimal("0")
        )
        self.return_percentage = return_percentage(self.total_result, self.total_invested)


@dataclass
class PieAllocation:
    """A saved target percent for a pie, overriding the one in its name."""
    pie_name: str
    target_allocation: Decimal


@dataclass
class OverallSummary:
    """Portfolio-wide totals across all included pies."""
    total_invested_overall: Decimal
    total_result_overall: Decimal
    return_percentage_overall: Decimal
    fetch_date: str


@dataclass
class AllocationAnalysis:
    """
    Current versus target allocation by pie category.

    Attributes:
        target_allocation: Target percent per category
        current_allocation: Current percent of bucketed invested value per category
        current_values: Invested value per category
        allocation_differences: target - current, formatted like "-5.00%"
        estimated_annual_dividend: Projected yearly dividend income
        rebalancing_recommended: Whether any drift exceeds the threshold
    """
    target_allocation: dict[str, Decimal]
    current_allocation: dict[str, Decimal]
    current_values: dict[str, Decimal]
    allocation_differences: dict[str, str]
    estimated_annual_dividend: Decimal = Decimal("0")
    rebalancing_recommended: bool = False


# Category -> amount of new capital to deploy (always >= 0)
TargetInvestments = dict[str, Decimal]


@dataclass
class RebalanceLine:
    """Current and target value of one category after new capital is added."""
    category: str
    current: Decimal
    target: Decimal
    difference: Decimal


@dataclass
class Benchmark:
    """One-year return of a market index used for comparison."""
    name: str
    return_percentage: Decimal
    symbol: str = ""
    description: str = ""
    last_updated: str = ""


@dataclass
class RefreshIssue:
    """A stage of a refresh that degraded instead of producing data."""
    stage: str
    reason: FailureReason
    detail: str = ""


@dataclass
class PerformanceMetrics:
    """
    Complete snapshot produced by one refresh cycle.

    A snapshot is always structurally valid; stages that failed leave their
    fields None (or zero) and add an entry to ``issues``.
    """
    portfolio: Optional[list[PieData]] = None
    overall_summary: Optional[OverallSummary] = None
    allocation_analysis: Optional[AllocationAnalysis] = None
    rebalance_investment_for_target: Optional[TargetInvestments] = None
    free_cash_available: Decimal = Decimal("0")
    fetch_date: str = field(default_factory=format_fetch_date)
    benchmarks: list[Benchmark] = field(default_factory=list)
    issues: list[RefreshIssue] = field(default_factory=list)

    def add_issue(self, stage: str, reason: FailureReason, detail: str = "") -> None:
        self.issues.append(RefreshIssue(stage=stage, reason=reason, detail=detail))

    @property
    def is_degraded(self) -> bool:
        return bool(self.issues)


@dataclass
class RefreshLogEntry:
    """
    Entry for the append-only refresh log.

    Attributes:
        timestamp: When the action occurred
        action_type: Type of action
        user_id: User whose refresh produced the entry (if known)
        details: JSON-serializable details dictionary
    """
    timestamp: datetime
    action_type: ActionType
    user_id: Optional[str]
    details: dict

    @classmethod
    def create(
        cls,
        action_type: ActionType,
        user_id: Optional[str],
        details: dict,
    ) -> "RefreshLogEntry":
        """Factory method with auto-generated timestamp."""
        return cls(
            timestamp=datetime.now(),
            action_type=action_type,
            user_id=user_id,
            details=details,
        )


@dataclass
class RefreshSettings:
    """
    Refresh configuration loaded from YAML.

    Attributes:
        monthly_budget: New capital deployed per month
        country: User country code (kept for display layers)
        inter_pie_delay: Seconds between sequential pie fetches
        request_delay: Initial retry backoff in seconds
        request_retries: Retries after the first attempt
        request_timeout: HTTP timeout in seconds
        cache_ttl_seconds: Response cache lifetime
        metadata_cache_hours: Instrument catalogue cache lifetime
        max_workers: Pies fetched concurrently (1 = sequential)
        instrument_workers: Instruments enriched concurrently per pie
        broker_rate_per_second: Broker request rate cap
        market_data_rate_per_second: Market-data request rate cap
        deadline_seconds: Overall refresh deadline (None = unbounded)
        include_benchmarks: Whether to fetch index benchmarks
        rebalance_threshold: Drift in percent that flags rebalancing
        duplicate_category_policy: Resolution for repeated pie categories
        output_dir: Directory for snapshots and the refresh log
        pie_allocations: Saved per-pie targets applied before analysis
    """
    monthly_budget: Decimal = Decimal("1000")
    country: str = "BG"
    inter_pie_delay: float = 1.0
    request_delay: float = 5.0
    request_retries: int = 3
    request_timeout: float = 10.0
    cache_ttl_seconds: int = 300
    metadata_cache_hours: int = 24
    max_workers: int = 1
    instrument_workers: int = 1
    broker_rate_per_second: float = 1.0
    market_data_rate_per_second: float = 5.0
    deadline_seconds: Optional[float] = None
    include_benchmarks: bool = True
    rebalance_threshold: Decimal = Decimal("5")
    duplicate_category_policy: DuplicateCategoryPolicy = DuplicateCategoryPolicy.LAST_WINS
    output_dir: str = "output"
    pie_allocations: list[PieAllocation] = field(default_factory=list)
