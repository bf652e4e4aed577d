"""
NVD mirror and reconciliation engine

Keeps a local vulnerability database in step with the NVD CVE API 2.0 while
preserving what other feeds contributed.

Key Components:
- NistMirrorTask: one incremental mirror run (mirror_task.py)
- sync/: checkpoint, single-writer dispatcher, reconcilers
- sources/nvd/: API client and record converter
- persistence/: PostgreSQL and in-memory stores
"""

from .events import EventService, IndexAction, IndexEvent, NistMirrorEvent
from .mirror_task import NistMirrorTask
from .models import (AffectedSoftware, AffectedVersionAttribution, Severity,
                     Source, Vulnerability)

__all__ = [
    'NistMirrorTask',
    'EventService',
    'IndexAction',
    'IndexEvent',
    'NistMirrorEvent',
    'Vulnerability',
    'AffectedSoftware',
    'AffectedVersionAttribution',
    'Severity',
    'Source',
]

__version__ = '1.0.0'
