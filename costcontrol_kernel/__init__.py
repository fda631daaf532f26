"""
Cost Control Kernel

Budget reconciliation core for construction project cost control:
- Cost ledger (individual cost items per project and category)
- Per-category budget breakdowns derived from the ledger
- Project-level financial aggregates derived from the breakdowns
- Atomic, conflict-checked recomputation on every ledger mutation
"""

__version__ = "0.1.0"
