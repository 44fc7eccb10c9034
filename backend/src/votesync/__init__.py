"""
votesync - electoral data sync and reconciliation

Keeps candidate, party and news records in step with upstream sources:
a run ledger, change detection, a retry queue and per-source workers.
"""

__version__ = "0.1.0"
