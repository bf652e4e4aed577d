"""
Reconciliation of feed records against the store

- CheckpointStore: the "modified since" watermark
- SyncDispatcher: single-writer lane between conversion and the database
- VulnerabilityReconciler: field level create / update of vulnerabilities
- AffectedSoftwareReconciler: attribution aware merge of affected ranges
"""

from .affected_software_sync import (AffectedSoftwareReconciler,
                                     AffectedSoftwareSyncResult)
from .checkpoint import CheckpointStore
from .differ import Diff, Differ, FieldSpec, OverwritePolicy
from .dispatcher import SyncDispatcher
from .vulnerability_sync import (VULNERABILITY_FIELDS, SyncOutcome,
                                 VulnerabilityReconciler)

__all__ = [
    'AffectedSoftwareReconciler',
    'AffectedSoftwareSyncResult',
    'CheckpointStore',
    'Diff',
    'Differ',
    'FieldSpec',
    'OverwritePolicy',
    'SyncDispatcher',
    'SyncOutcome',
    'VULNERABILITY_FIELDS',
    'VulnerabilityReconciler',
]
