"""Service module exports."""

from . import applier, export_csv, invariants, ledger_service, monthly_cycle, reports

__all__ = [
    "applier",
    "export_csv",
    "invariants",
    "ledger_service",
    "monthly_cycle",
    "reports",
]
