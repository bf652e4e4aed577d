"""
In-process store.

Backs dry runs and the test suite. Objects are copied on the way in and on the
way out, so callers only change stored state through session methods. Each
session keeps an undo log that is replayed when its transaction fails.
"""

import asyncio
import copy
import itertools
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..models import (AffectedSoftware, AffectedVersionAttribution, Source,
                      Vulnerability)
from ..sources.base.exceptions import ReconciliationException
from .base import Store, StoreSession


class MemoryStore(Store):

    def __init__(self):
        self.vulnerabilities: Dict[int, Vulnerability] = {}
        self.affected_software: Dict[int, AffectedSoftware] = {}
        self.associations: Dict[int, Set[int]] = defaultdict(set)
        self.attributions: Dict[int, AffectedVersionAttribution] = {}
        self.config_properties: Dict[Tuple[str, str], Optional[str]] = {}
        self._ids = itertools.count(1)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def next_id(self) -> int:
        return next(self._ids)

    @asynccontextmanager
    async def transaction(self, lock_key: Optional[str] = None):
        lock = self._locks[lock_key] if lock_key else None
        if lock is not None:
            await lock.acquire()
        session = MemorySession(self)
        try:
            yield session
        except BaseException:
            session.rollback()
            raise
        finally:
            if lock is not None:
                lock.release()

    # Read helpers for assertions and reporting; not part of the session contract
    def vulnerability(self, source: Source, vuln_id: str) -> Optional[Vulnerability]:
        for vuln in self.vulnerabilities.values():
            if vuln.natural_key == (source, vuln_id):
                return copy.deepcopy(vuln)
        return None

    def associated(self, vulnerability_id: int) -> List[AffectedSoftware]:
        return [copy.deepcopy(self.affected_software[vs_id])
                for vs_id in sorted(self.associations.get(vulnerability_id, ()))]

    def attributions_for(self, vulnerability_id: int,
                         affected_software_id: Optional[int] = None) -> List[AffectedVersionAttribution]:
        return [copy.deepcopy(a) for a in self.attributions.values()
                if a.vulnerability_id == vulnerability_id
                and (affected_software_id is None or a.affected_software_id == affected_software_id)]


class MemorySession(StoreSession):

    def __init__(self, store: MemoryStore):
        self.store = store
        self._undo: List[Callable[[], None]] = []

    def rollback(self):
        while self._undo:
            self._undo.pop()()

    async def get_vulnerability(self, source: Source, vuln_id: str) -> Optional[Vulnerability]:
        return self.store.vulnerability(source, vuln_id)

    async def insert_vulnerability(self, vuln: Vulnerability) -> Vulnerability:
        if self.store.vulnerability(vuln.source, vuln.vuln_id) is not None:
            raise ReconciliationException("Duplicate natural key", source_name=vuln.source.value,
                                          vuln_id=vuln.vuln_id)
        persistent = copy.deepcopy(vuln)
        persistent.id = self.store.next_id()
        self.store.vulnerabilities[persistent.id] = persistent
        self._undo.append(lambda: self.store.vulnerabilities.pop(persistent.id, None))
        return copy.deepcopy(persistent)

    async def update_vulnerability(self, vuln: Vulnerability):
        if vuln.id not in self.store.vulnerabilities:
            raise ReconciliationException("Vulnerability is not persistent", vuln_id=vuln.vuln_id)
        previous = self.store.vulnerabilities[vuln.id]
        self.store.vulnerabilities[vuln.id] = copy.deepcopy(vuln)
        self._undo.append(lambda: self.store.vulnerabilities.__setitem__(vuln.id, previous))

    async def get_affected_software(self, vulnerability_id: int) -> List[AffectedSoftware]:
        return self.store.associated(vulnerability_id)

    async def get_attributions(self, vulnerability_id: int,
                               affected_software_ids: Iterable[int]) -> Dict[int, List[AffectedVersionAttribution]]:
        wanted = set(affected_software_ids)
        result: Dict[int, List[AffectedVersionAttribution]] = defaultdict(list)
        for attribution in self.store.attributions_for(vulnerability_id):
            if attribution.affected_software_id in wanted:
                result[attribution.affected_software_id].append(attribution)
        return dict(result)

    async def find_affected_software(self, affected: AffectedSoftware) -> Optional[AffectedSoftware]:
        for candidate in self.store.affected_software.values():
            if candidate == affected:
                return copy.deepcopy(candidate)
        return None

    async def insert_affected_software(self, affected: AffectedSoftware) -> AffectedSoftware:
        persistent = copy.deepcopy(affected)
        persistent.id = self.store.next_id()
        self.store.affected_software[persistent.id] = persistent
        self._undo.append(lambda: self.store.affected_software.pop(persistent.id, None))
        return copy.deepcopy(persistent)

    async def has_attribution(self, vulnerability_id: int, affected_software_id: int,
                              source: Source) -> bool:
        return any(a.source is source for a in self.store.attributions_for(vulnerability_id, affected_software_id))

    async def insert_attribution(self, attribution: AffectedVersionAttribution) -> AffectedVersionAttribution:
        if await self.has_attribution(attribution.vulnerability_id, attribution.affected_software_id,
                                      attribution.source):
            raise ReconciliationException("Duplicate attribution", source_name=attribution.source.value)
        persistent = copy.deepcopy(attribution)
        persistent.id = self.store.next_id()
        self.store.attributions[persistent.id] = persistent
        self._undo.append(lambda: self.store.attributions.pop(persistent.id, None))
        return copy.deepcopy(persistent)

    def _matching(self, vulnerability_id: int, affected_software_ids: Iterable[int],
                  source: Source) -> List[AffectedVersionAttribution]:
        wanted = set(affected_software_ids)
        return [a for a in self.store.attributions.values()
                if a.vulnerability_id == vulnerability_id
                and a.affected_software_id in wanted
                and a.source is source]

    async def touch_attributions(self, vulnerability_id: int, affected_software_ids: Iterable[int],
                                 source: Source, seen_at: datetime) -> int:
        matching = self._matching(vulnerability_id, affected_software_ids, source)
        for attribution in matching:
            previous = attribution.last_seen
            attribution.last_seen = seen_at
            self._undo.append(lambda a=attribution, p=previous: setattr(a, 'last_seen', p))
        return len(matching)

    async def delete_attributions(self, vulnerability_id: int, affected_software_ids: Iterable[int],
                                  source: Source) -> int:
        matching = self._matching(vulnerability_id, affected_software_ids, source)
        for attribution in matching:
            del self.store.attributions[attribution.id]
            self._undo.append(lambda a=attribution: self.store.attributions.__setitem__(a.id, a))
        return len(matching)

    async def set_affected_software(self, vulnerability_id: int, affected_software_ids: Iterable[int]):
        previous = set(self.store.associations.get(vulnerability_id, ()))
        self.store.associations[vulnerability_id] = set(affected_software_ids)
        self._undo.append(lambda: self.store.associations.__setitem__(vulnerability_id, previous))

    async def get_config_property(self, group_name: str, property_name: str) -> Optional[str]:
        return self.store.config_properties.get((group_name, property_name))

    async def set_config_property(self, group_name: str, property_name: str, value: Optional[str]):
        key = (group_name, property_name)
        existed = key in self.store.config_properties
        previous = self.store.config_properties.get(key)
        self.store.config_properties[key] = value
        if existed:
            self._undo.append(lambda: self.store.config_properties.__setitem__(key, previous))
        else:
            self._undo.append(lambda: self.store.config_properties.pop(key, None))
