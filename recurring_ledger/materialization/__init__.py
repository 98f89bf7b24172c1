"""Materialization package: duplicate guard and per-occurrence writer."""

from recurring_ledger.materialization.guard import IdempotencyGuard
from recurring_ledger.materialization.materializer import Materializer

__all__ = ["IdempotencyGuard", "Materializer"]
