"""
Affected-Software Reconciler

Merges the ranges one source reports for a vulnerability with the ranges that
are already associated with it, without losing what other sources reported.

Every associated range carries at least one attribution. For the reporting
source, a range that is

- reported and already associated        is kept, its attribution refreshed
                                         (or created if the source had none)
- associated but no longer reported      loses this source's attribution and
                                         stays only if another source still
                                         attributes it
- reported and not yet associated        is attached, reusing an identical
                                         row from any other vulnerability
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ..models import (AffectedSoftware, AffectedVersionAttribution, Source,
                      Vulnerability)
from ..persistence.base import Store
from ..sources.base.exceptions import ReconciliationException

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AffectedSoftwareSyncResult:
    kept: List[AffectedSoftware] = field(default_factory=list)
    added: List[AffectedSoftware] = field(default_factory=list)
    removed: List[AffectedSoftware] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


class AffectedSoftwareReconciler:

    def __init__(self, store: Store, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utc_now

    async def reconcile(self, vuln: Vulnerability, reported: List[AffectedSoftware],
                        source: Optional[Source] = None,
                        seen_at: Optional[datetime] = None) -> AffectedSoftwareSyncResult:
        """
        Reconcile the affected software of a persistent vulnerability.

        Args:
            vuln: Persistent vulnerability, as returned by the Vulnerability Reconciler
            reported: Ranges reported by `source` in this run; duplicates are collapsed
            source: Reporting source, defaults to the vulnerability's own source
            seen_at: Attribution timestamp, defaults to now

        Raises:
            ReconciliationException: If `vuln` has no store id
        """
        if vuln.id is None:
            raise ReconciliationException("Vulnerability is not persistent", source_name=vuln.source.value,
                                          vuln_id=vuln.vuln_id)

        source = source or vuln.source
        seen_at = seen_at or self.clock()
        result = AffectedSoftwareSyncResult()

        # Shared-read transaction: different vulnerabilities never wait on each other
        async with self.store.transaction() as session:
            associated = await session.get_affected_software(vuln.id)
            attributions = await session.get_attributions(vuln.id, [vs.id for vs in associated])
            logger.debug(f"{vuln.vuln_id}: existing affected software: {len(associated)}")

            pending: Dict[tuple, AffectedSoftware] = {}
            for vs in reported:
                pending.setdefault(vs.key, vs)

            refresh_ids: List[int] = []
            attribute_ids: List[int] = []
            detach_ids: List[int] = []

            for vs in associated:
                vs_attributions = attributions.get(vs.id, [])
                by_source = any(a.source is source for a in vs_attributions)
                by_others = any(a.source is not source for a in vs_attributions)

                if pending.pop(vs.key, None) is not None:
                    result.kept.append(vs)
                    (refresh_ids if by_source else attribute_ids).append(vs.id)
                elif not vs_attributions:
                    logger.warning(f"⚠️ {vuln.vuln_id}: {vs.describe()} has no attribution; removing it")
                    result.removed.append(vs)
                elif by_others:
                    logger.debug(f"{vuln.vuln_id}: keeping {vs.describe()}, still reported by other sources")
                    result.kept.append(vs)
                    if by_source:
                        detach_ids.append(vs.id)
                else:
                    logger.debug(f"{vuln.vuln_id}: {vs.describe()} is no longer reported")
                    result.removed.append(vs)

            logger.debug(f"{vuln.vuln_id}: keep={len(result.kept)} remove={len(result.removed)} "
                         f"new={len(pending)}")

            stale_ids = detach_ids + [vs.id for vs in result.removed]
            if stale_ids:
                await session.delete_attributions(vuln.id, stale_ids, source)
            if refresh_ids:
                await session.touch_attributions(vuln.id, refresh_ids, source, seen_at)
            for vs_id in attribute_ids:
                await session.insert_attribution(self._attribution(vuln.id, vs_id, source, seen_at))

            kept_ids = {vs.id for vs in result.kept}
            for vs in pending.values():
                persistent = await session.find_affected_software(vs)
                if persistent is None:
                    logger.debug(f"{vuln.vuln_id}: creating {vs.describe()}")
                    persistent = await session.insert_affected_software(vs)
                if await session.has_attribution(vuln.id, persistent.id, source):
                    # Left over from an earlier association; it is being reported again
                    await session.touch_attributions(vuln.id, [persistent.id], source, seen_at)
                else:
                    await session.insert_attribution(self._attribution(vuln.id, persistent.id, source, seen_at))
                if persistent.id not in kept_ids:
                    kept_ids.add(persistent.id)
                    result.kept.append(persistent)
                    result.added.append(persistent)

            await session.set_affected_software(vuln.id, [vs.id for vs in result.kept])

        logger.debug(f"{vuln.vuln_id}: final affected software: {len(result.kept)}")
        return result

    @staticmethod
    def _attribution(vulnerability_id: int, affected_software_id: int, source: Source,
                     seen_at: datetime) -> AffectedVersionAttribution:
        return AffectedVersionAttribution(
            vulnerability_id=vulnerability_id,
            affected_software_id=affected_software_id,
            source=source,
            first_seen=seen_at,
            last_seen=seen_at,
        )
