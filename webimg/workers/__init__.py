"""Workers: background execution for work that must not block the controller."""

from webimg.workers.reconciler import (
    ReconcileError,
    ReconcileWorker,
    reconcile_index,
    scan_source_tree,
)

__all__ = ["ReconcileError", "ReconcileWorker", "reconcile_index", "scan_source_tree"]
