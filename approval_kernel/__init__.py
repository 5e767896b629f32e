"""
Approval Kernel

Access-control and approval-workflow core for the construction business
suite (estimates, budgets, purchasing, contracts):
- Attribute-based policy decisions over nested condition trees
- Approval flow selection by structural matching
- Multi-step approval request lifecycle with per-request serialization
- Typed errors and structured logging throughout
"""

__version__ = "0.1.0"
