"""Action Layer - Patch application and the reconciliation loop."""

from pagepatch.layers.action.applier import ApplyReport, ApplyResult, PatchApplier
from pagepatch.layers.action.reconciler import MutationFeed, Reconciler

__all__ = ["ApplyReport", "ApplyResult", "MutationFeed", "PatchApplier", "Reconciler"]
