"""API routers package."""

from ledger_recon.routers import reconciliation

__all__ = ["reconciliation"]
