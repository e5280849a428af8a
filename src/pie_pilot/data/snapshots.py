"""
Snapshot export and persistence.

PerformanceMetrics snapshots are written as JSON with Decimal values stored
as strings so they load back without loss. A whitelisted public view is
provided for consumers that must not see raw broker fields.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import asdict, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from pie_pilot.models import (
    PERFORMANCE_FIELDS,
    AllocationAnalysis,
    Benchmark,
    FailureReason,
    OverallSummary,
    PerformanceMetrics,
    PieData,
    PieInstrument,
    RefreshIssue,
    as_decimal,
)
from pie_pilot.logging.refresh_log import DecimalEncoder


class SnapshotStoreError(Exception):
    """Raised when a snapshot cannot be read or written."""
    pass


# Instrument fields exposed to consumers; broker flags and trading-size
# constraints stay internal
PUBLIC_INSTRUMENT_FIELDS = (
    "ticker",
    "full_name",
    "currency_code",
    "type",
    "owned_quantity",
    "invested_value",
    "current_value",
    "result_value",
    "dividend_yield",
) + PERFORMANCE_FIELDS

PUBLIC_PIE_FIELDS = (
    "name",
    "creation_date",
    "dividend_cash_action",
    "total_invested",
    "total_result",
    "return_percentage",
    "fetch_date",
    "target_allocation",
)


def snapshot_to_dict(metrics: PerformanceMetrics) -> dict[str, Any]:
    """Full snapshot as a dictionary (Decimals preserved)."""
    data = asdict(metrics)
    for issue in data["issues"]:
        issue["reason"] = issue["reason"].value
    return data


def _decimal_fields(cls) -> set[str]:
    return {f.name for f in fields(cls) if f.type in (Decimal, Optional[Decimal])}


def _restore(cls, record: dict[str, Any]):
    """Build a flat dataclass from a dict, converting Decimal-typed fields."""
    decimal_fields = _decimal_fields(cls)
    known = {f.name for f in fields(cls)}
    values = {}
    for key, value in record.items():
        if key not in known:
            continue
        if key in decimal_fields and value is not None:
            value = as_decimal(value)
        values[key] = value
    return cls(**values)


def _decimal_map(values: Optional[dict[str, Any]]) -> Optional[dict[str, Decimal]]:
    if values is None:
        return None
    return {k: as_decimal(v) for k, v in values.items()}


def snapshot_from_dict(data: dict[str, Any]) -> PerformanceMetrics:
    """
    Rebuild a PerformanceMetrics from snapshot_to_dict output (or its JSON).

    Raises:
        SnapshotStoreError: If the dictionary is not a snapshot
    """
    if not isinstance(data, dict):
        raise SnapshotStoreError("Snapshot must be a JSON object")

    try:
        portfolio = None
        if data.get("portfolio") is not None:
            portfolio = []
            for pie_record in data["portfolio"]:
                pie_record = dict(pie_record)
                instruments = [
                    _restore(PieInstrument, i) for i in pie_record.pop("instruments", [])
                ]
                pie = _restore(PieData, pie_record)
                pie.instruments = instruments
                portfolio.append(pie)

        summary = None
        if data.get("overall_summary") is not None:
            summary = _restore(OverallSummary, data["overall_summary"])

        analysis = None
        if data.get("allocation_analysis") is not None:
            raw = data["allocation_analysis"]
            analysis = AllocationAnalysis(
                target_allocation=_decimal_map(raw.get("target_allocation")) or {},
                current_allocation=_decimal_map(raw.get("current_allocation")) or {},
                current_values=_decimal_map(raw.get("current_values")) or {},
                allocation_differences=dict(raw.get("allocation_differences") or {}),
                estimated_annual_dividend=as_decimal(raw.get("estimated_annual_dividend")),
                rebalancing_recommended=bool(raw.get("rebalancing_recommended", False)),
            )

        metrics = PerformanceMetrics(
            portfolio=portfolio,
            overall_summary=summary,
            allocation_analysis=analysis,
            rebalance_investment_for_target=_decimal_map(
                data.get("rebalance_investment_for_target")
            ),
            free_cash_available=as_decimal(data.get("free_cash_available")),
            benchmarks=[_restore(Benchmark, b) for b in data.get("benchmarks") or []],
            issues=[
                RefreshIssue(
                    stage=i["stage"],
                    reason=FailureReason(i["reason"]),
                    detail=i.get("detail", ""),
                )
                for i in data.get("issues") or []
            ],
        )
        if data.get("fetch_date"):
            metrics.fetch_date = data["fetch_date"]
        return metrics
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise SnapshotStoreError(f"Malformed snapshot: {e}")


def _public_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def _public_map(values: Optional[dict[str, Decimal]]) -> Optional[dict[str, float]]:
    if values is None:
        return None
    return {k: float(v) for k, v in values.items()}


def snapshot_to_public_dict(metrics: PerformanceMetrics) -> dict[str, Any]:
    """
    Whitelisted view of a snapshot for consumers.

    Money values are plain floats. Pie ids, broker issue flags, trading-size
    constraints and failure details are left out.
    """
    portfolio = None
    if metrics.portfolio is not None:
        portfolio = []
        for pie in metrics.portfolio:
            pie_dict = {name: _public_value(getattr(pie, name)) for name in PUBLIC_PIE_FIELDS}
            pie_dict["instruments"] = [
                {name: _public_value(getattr(i, name)) for name in PUBLIC_INSTRUMENT_FIELDS}
                for i in pie.instruments
            ]
            portfolio.append(pie_dict)

    summary = None
    if metrics.overall_summary is not None:
        summary = {
            k: _public_value(v) for k, v in asdict(metrics.overall_summary).items()
        }

    analysis = None
    if metrics.allocation_analysis is not None:
        a = metrics.allocation_analysis
        analysis = {
            "target_allocation": _public_map(a.target_allocation),
            "current_allocation": _public_map(a.current_allocation),
            "current_values": _public_map(a.current_values),
            "allocation_differences": dict(a.allocation_differences),
            "estimated_annual_dividend": float(a.estimated_annual_dividend),
            "rebalancing_recommended": a.rebalancing_recommended,
        }

    return {
        "portfolio": portfolio,
        "overall_summary": summary,
        "allocation_analysis": analysis,
        "rebalance_investment_for_target": _public_map(metrics.rebalance_investment_for_target),
        "free_cash_available": float(metrics.free_cash_available),
        "fetch_date": metrics.fetch_date,
        "benchmarks": [
            {
                "name": b.name,
                "return_percentage": float(b.return_percentage),
                "description": b.description,
                "last_updated": b.last_updated,
            }
            for b in metrics.benchmarks
        ],
        "issues": [{"stage": i.stage, "reason": i.reason.value} for i in metrics.issues],
    }


def save_snapshot(
    metrics: PerformanceMetrics,
    output_path: str | Path,
    public: bool = False,
) -> Path:
    """
    Save a snapshot to a JSON file.

    Args:
        metrics: Snapshot to save
        output_path: Path for the output JSON file
        public: Write the whitelisted public view instead of the full snapshot

    Returns:
        Path to the saved file

    Raises:
        SnapshotStoreError: If the file cannot be written
    """
    output_path = Path(output_path)
    data = snapshot_to_public_dict(metrics) if public else snapshot_to_dict(metrics)

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            json.dump(data, f, indent=2, cls=DecimalEncoder)
    except OSError as e:
        raise SnapshotStoreError(f"Cannot write snapshot {output_path}: {e}")

    return output_path


def load_snapshot(input_path: str | Path) -> PerformanceMetrics:
    """
    Load a full snapshot written by save_snapshot.

    Raises:
        SnapshotStoreError: If the file is missing or not a snapshot
    """
    input_path = Path(input_path)
    if not input_path.exists():
        raise SnapshotStoreError(f"Snapshot file not found: {input_path}")

    try:
        with open(input_path, "r") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise SnapshotStoreError(f"Cannot read snapshot {input_path}: {e}")

    return snapshot_from_dict(data)


def save_holdings_csv(
    metrics: PerformanceMetrics,
    output_path: str | Path,
) -> Path:
    """
    Save one row per pie holding to a CSV file.

    Args:
        metrics: Snapshot to flatten
        output_path: Path for output CSV file

    Returns:
        Path to the saved file

    Raises:
        SnapshotStoreError: If the file cannot be written
    """
    output_path = Path(output_path)

    records = []
    for pie in metrics.portfolio or []:
        for i in pie.instruments:
            records.append({
                "pie": pie.name,
                "ticker": i.ticker,
                "name": i.full_name or "",
                "owned_quantity": float(i.owned_quantity),
                "invested_value": float(i.invested_value),
                "current_value": float(i.current_value),
                "result_value": float(i.result_value),
                "dividend_yield": float(i.dividend_yield),
                **{name: getattr(i, name) for name in PERFORMANCE_FIELDS},
            })

    columns = [
        "pie", "ticker", "name", "owned_quantity", "invested_value",
        "current_value", "result_value", "dividend_yield", *PERFORMANCE_FIELDS,
    ]
    df = pd.DataFrame(records, columns=columns)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(output_path, index=False)
    except OSError as e:
        raise SnapshotStoreError(f"Cannot write holdings {output_path}: {e}")

    return output_path


class SnapshotStore(ABC):
    """Per-user persistence of the latest snapshot."""

    @abstractmethod
    def save(self, user_id: str, metrics: PerformanceMetrics) -> None:
        """Replace the stored snapshot for a user."""
        pass

    @abstractmethod
    def load(self, user_id: str) -> Optional[PerformanceMetrics]:
        """Return the stored snapshot for a user, or None if there is none."""
        pass


class FileSnapshotStore(SnapshotStore):
    """Snapshot store keeping one JSON file per user in a directory."""

    def __init__(self, directory: str | Path = "output/snapshots"):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, user_id: str) -> Path:
        safe_id = "".join(c for c in user_id if c.isalnum() or c in "-_")
        if not safe_id:
            raise SnapshotStoreError(f"Invalid user id: {user_id!r}")
        return self.directory / f"snapshot_{safe_id}.json"

    def save(self, user_id: str, metrics: PerformanceMetrics) -> None:
        try:
            save_snapshot(metrics, self._path(user_id))
        except OSError as e:
            raise SnapshotStoreError(f"Cannot save snapshot for {user_id}: {e}")

    def load(self, user_id: str) -> Optional[PerformanceMetrics]:
        path = self._path(user_id)
        if not path.exists():
            return None
        return load_snapshot(path)
