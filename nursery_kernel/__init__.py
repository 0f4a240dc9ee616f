"""
Nursery Kernel - tag lifecycle and stock rollup core.

An event-sourced inventory core for a tree nursery with:
- A fixed, closed lifecycle state machine per tagged tree
- Append-only audit ledger of every status change
- Compare-and-set writes with explicit conflict signalling
- Recomputable stock rollups with consistency alerts
- Pooled and per-unit reservation policy
"""

__version__ = "0.1.0"
