"""
Data module for the pie portfolio engine.

Provides snapshot export and persistence. Broker and market data access
lives in pie_pilot.data.providers.
"""

from pie_pilot.data.snapshots import (
    FileSnapshotStore,
    SnapshotStore,
    SnapshotStoreError,
    load_snapshot,
    save_holdings_csv,
    save_snapshot,
    snapshot_from_dict,
    snapshot_to_dict,
    snapshot_to_public_dict,
)

__all__ = [
    "FileSnapshotStore",
    "SnapshotStore",
    "SnapshotStoreError",
    "load_snapshot",
    "save_holdings_csv",
    "save_snapshot",
    "snapshot_from_dict",
    "snapshot_to_dict",
    "snapshot_to_public_dict",
]
