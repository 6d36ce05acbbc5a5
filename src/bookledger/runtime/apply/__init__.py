# src/bookledger/runtime/apply/__init__.py
"""Domain-specific apply modules.

These modules implement deterministic ledger state transitions for subsets
of tx types. domain_dispatch routes each envelope to the first applier that
claims it.

NOTE: Keep this package import-safe (no imports that require domain_dispatch).
"""

from __future__ import annotations

__all__ = [
    "library",
]
