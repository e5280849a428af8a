"""
Append-only refresh logging for the pie portfolio engine.

Each refresh records what it fetched and derived, with timestamps, so a
snapshot can be traced back to the inputs that produced it.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from pie_pilot.models import (
    ActionType,
    AllocationAnalysis,
    OverallSummary,
    PerformanceMetrics,
    PieData,
    RefreshLogEntry,
    RefreshSettings,
    TargetInvestments,
)


class RefreshLogger:
    """
    Append-only refresh logger.

    Writes all refresh steps to a JSONL file for audit purposes.
    Each line is a complete JSON object representing one action.
    """

    def __init__(self, log_path: str | Path):
        """
        Initialize the refresh logger.

        Args:
            log_path: Path to the log file (will be created if not exists)
        """
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: RefreshLogEntry) -> None:
        """
        Write a refresh log entry.

        Args:
            entry: RefreshLogEntry to write
        """
        record = {
            "timestamp": entry.timestamp.isoformat(),
            "action_type": entry.action_type.value,
            "user_id": entry.user_id,
            "details": entry.details,
        }

        with open(self.log_path, "a") as f:
            f.write(json.dumps(record, cls=DecimalEncoder) + "\n")

    def _log(self, action_type: ActionType, user_id: Optional[str], details: dict) -> None:
        self.log(RefreshLogEntry.create(action_type=action_type, user_id=user_id, details=details))

    def log_config_loaded(
        self,
        settings: RefreshSettings,
        config_path: str,
        user_id: Optional[str] = None,
    ) -> None:
        """Log the settings a refresh runs with."""
        self._log(ActionType.CONFIG_LOADED, user_id, {
            "config_path": config_path,
            "monthly_budget": str(settings.monthly_budget),
            "max_workers": settings.max_workers,
            "deadline_seconds": settings.deadline_seconds,
            "duplicate_category_policy": settings.duplicate_category_policy.value,
            "saved_pie_targets": len(settings.pie_allocations),
        })

    def log_cash_fetched(self, free_cash: Decimal, user_id: Optional[str] = None) -> None:
        self._log(ActionType.CASH_FETCHED, user_id, {"free_cash": str(free_cash)})

    def log_metadata_loaded(self, num_instruments: int, user_id: Optional[str] = None) -> None:
        self._log(ActionType.METADATA_LOADED, user_id, {"num_instruments": num_instruments})

    def log_pies_aggregated(
        self,
        pies: list[PieData],
        summary: OverallSummary,
        user_id: Optional[str] = None,
    ) -> None:
        """
        Log pie aggregation.

        Args:
            pies: Pies included in the aggregate
            summary: Overall totals
            user_id: User whose refresh this is
        """
        self._log(ActionType.PIES_AGGREGATED, user_id, {
            "num_pies": len(pies),
            "num_instruments": sum(len(p.instruments) for p in pies),
            "total_invested": str(summary.total_invested_overall),
            "total_result": str(summary.total_result_overall),
            "return_percentage": str(summary.return_percentage_overall),
        })

    def log_allocation_analyzed(
        self,
        analysis: AllocationAnalysis,
        user_id: Optional[str] = None,
    ) -> None:
        self._log(ActionType.ALLOCATION_ANALYZED, user_id, {
            "categories": sorted(analysis.target_allocation),
            "allocation_differences": analysis.allocation_differences,
            "rebalancing_recommended": analysis.rebalancing_recommended,
            "estimated_annual_dividend": str(analysis.estimated_annual_dividend),
        })

    def log_rebalance_planned(
        self,
        plan: TargetInvestments,
        budget: Decimal,
        user_id: Optional[str] = None,
    ) -> None:
        self._log(ActionType.REBALANCE_PLANNED, user_id, {
            "budget": str(budget),
            "investments": {k: str(v) for k, v in plan.items()},
        })

    def log_refresh_finished(
        self,
        metrics: PerformanceMetrics,
        user_id: Optional[str] = None,
    ) -> None:
        """
        Log the end of a refresh.

        Degraded snapshots are logged as REFRESH_DEGRADED with their issues.
        """
        action_type = (
            ActionType.REFRESH_DEGRADED if metrics.is_degraded else ActionType.REFRESH_COMPLETED
        )
        self._log(action_type, user_id, {
            "fetch_date": metrics.fetch_date,
            "num_pies": len(metrics.portfolio) if metrics.portfolio is not None else None,
            "free_cash": str(metrics.free_cash_available),
            "issues": [
                {"stage": i.stage, "reason": i.reason.value, "detail": i.detail}
                for i in metrics.issues
            ],
        })

    def read_log(self) -> list[RefreshLogEntry]:
        """
        Read all entries from the log file.

        Returns:
            List of RefreshLogEntry objects
        """
        if not self.log_path.exists():
            return []

        entries = []
        with open(self.log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                record = json.loads(line)
                entries.append(
                    RefreshLogEntry(
                        timestamp=datetime.fromisoformat(record["timestamp"]),
                        action_type=ActionType(record["action_type"]),
                        user_id=record.get("user_id"),
                        details=record.get("details", {}),
                    )
                )

        return entries

    def get_entries_by_type(self, action_type: ActionType) -> list[RefreshLogEntry]:
        """Get log entries of a specific action type."""
        return [e for e in self.read_log() if e.action_type == action_type]

    def get_entries_for_user(self, user_id: str) -> list[RefreshLogEntry]:
        """Get log entries for a specific user."""
        return [e for e in self.read_log() if e.user_id == user_id]


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (date, datetime)):
            return obj.isoformat()
        return super().default(obj)


# Global logger instance (initialized on first use)
_global_logger: Optional[RefreshLogger] = None


def get_refresh_logger(log_path: Optional[str | Path] = None) -> RefreshLogger:
    """
    Get or create the global refresh logger.

    Args:
        log_path: Optional path; a new path replaces the current logger

    Returns:
        RefreshLogger instance
    """
    global _global_logger

    if _global_logger is None:
        if log_path is None:
            log_path = "output/refresh_log.jsonl"
        _global_logger = RefreshLogger(log_path)
    elif log_path is not None:
        _global_logger = RefreshLogger(log_path)

    return _global_logger
