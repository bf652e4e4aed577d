"""
Vulnerability Reconciler

Creates or updates the persistent Vulnerability for one reported record. The
natural key lookup, the diff and the write happen in one transaction that is
exclusive per (source, vuln_id). The index event for a created or changed
vulnerability is dispatched only after that transaction committed.
"""

import logging
from enum import Enum
from typing import Optional, Tuple

from ..events import EventService, IndexAction, IndexEvent
from ..models import Vulnerability
from ..persistence.base import Store
from ..sources.base.exceptions import ReconciliationException
from .differ import Differ, FieldSpec, OverwritePolicy

logger = logging.getLogger(__name__)

ALWAYS = OverwritePolicy.ALWAYS
IF_PRESENT = OverwritePolicy.IF_PRESENT

# Evaluation order matters: assigning severity clears every CVSS and OWASP RR
# field, so severity has to be applied before them or they would be wiped again.
VULNERABILITY_FIELDS = [
    FieldSpec('title', ALWAYS),
    FieldSpec('sub_title', ALWAYS),
    FieldSpec('description', ALWAYS),
    FieldSpec('detail', ALWAYS),
    FieldSpec('recommendation', ALWAYS),
    FieldSpec('references', ALWAYS),
    FieldSpec('credits', ALWAYS),
    FieldSpec('created', ALWAYS),
    FieldSpec('published', ALWAYS),
    FieldSpec('updated', ALWAYS),
    FieldSpec('cwes', ALWAYS),
    FieldSpec('severity', ALWAYS),
    FieldSpec('cvss_v2_base_score', ALWAYS),
    FieldSpec('cvss_v2_impact_sub_score', ALWAYS),
    FieldSpec('cvss_v2_exploitability_sub_score', ALWAYS),
    FieldSpec('cvss_v2_vector', ALWAYS),
    FieldSpec('cvss_v3_base_score', ALWAYS),
    FieldSpec('cvss_v3_impact_sub_score', ALWAYS),
    FieldSpec('cvss_v3_exploitability_sub_score', ALWAYS),
    FieldSpec('cvss_v3_vector', ALWAYS),
    FieldSpec('owasp_rr_likelihood_score', ALWAYS),
    FieldSpec('owasp_rr_technical_impact_score', ALWAYS),
    FieldSpec('owasp_rr_business_impact_score', ALWAYS),
    FieldSpec('owasp_rr_vector', ALWAYS),
    FieldSpec('vulnerable_versions', ALWAYS),
    FieldSpec('patched_versions', ALWAYS),
    # No feed provides EPSS; a mirror run must never purge it
    FieldSpec('epss_score', IF_PRESENT),
    FieldSpec('epss_percentile', IF_PRESENT),
]


class SyncOutcome(Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def update_vulnerability(existing: Vulnerability, reported: Vulnerability) -> Differ:
    """Apply reported values onto `existing` in place; the Differ holds what changed"""
    differ = Differ(existing, reported)
    differ.apply_all(VULNERABILITY_FIELDS)
    return differ


class VulnerabilityReconciler:

    def __init__(self, store: Store, event_service: Optional[EventService] = None):
        self.store = store
        self.event_service = event_service

    async def reconcile(self, reported: Vulnerability) -> Tuple[Vulnerability, SyncOutcome]:
        """
        Create or update the persistent counterpart of `reported`.

        Returns the persistent vulnerability (with its store id) and what happened.
        """
        async with self.store.transaction(lock_key=reported.lock_key) as session:
            persistent = await session.get_vulnerability(reported.source, reported.vuln_id)
            if persistent is None:
                persistent = await session.insert_vulnerability(reported)
                outcome = SyncOutcome.CREATED
            else:
                differ = update_vulnerability(persistent, reported)
                if differ.changed:
                    changes = ', '.join(f"{name}: {diff}" for name, diff in differ.diffs.items())
                    logger.debug(f"{reported.vuln_id} has changed: {changes}")
                    await session.update_vulnerability(persistent)
                    outcome = SyncOutcome.UPDATED
                else:
                    logger.debug(f"{reported.vuln_id} has not changed")
                    outcome = SyncOutcome.UNCHANGED

        if persistent.id is None:
            raise ReconciliationException("Store did not assign a row id", source_name=reported.source.value,
                                          vuln_id=reported.vuln_id)

        if outcome is not SyncOutcome.UNCHANGED and self.event_service is not None:
            action = IndexAction.CREATE if outcome is SyncOutcome.CREATED else IndexAction.UPDATE
            await self.event_service.dispatch(IndexEvent(action, persistent))

        return persistent, outcome
