"""
Store contract used by the reconcilers.

A Store hands out sessions through `transaction()`. Everything done through a
session commits together when the block exits normally and is rolled back when
it raises. Passing `lock_key` makes the transaction exclusive for that key: a
second transaction with the same key waits until the first one has finished.
Transactions without a key never wait on each other.
"""

import abc
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..models import (AffectedSoftware, AffectedVersionAttribution, Source,
                      Vulnerability)


class StoreSession(abc.ABC):

    @abc.abstractmethod
    async def get_vulnerability(self, source: Source, vuln_id: str) -> Optional[Vulnerability]:
        """Natural key lookup; related collections are not loaded"""

    @abc.abstractmethod
    async def insert_vulnerability(self, vuln: Vulnerability) -> Vulnerability:
        """Persist a new vulnerability and return it with its store id"""

    @abc.abstractmethod
    async def update_vulnerability(self, vuln: Vulnerability):
        """Write every mutable column of an already persistent vulnerability"""

    @abc.abstractmethod
    async def get_affected_software(self, vulnerability_id: int) -> List[AffectedSoftware]:
        """AffectedSoftware currently associated with a vulnerability"""

    @abc.abstractmethod
    async def get_attributions(self, vulnerability_id: int,
                               affected_software_ids: Iterable[int]) -> Dict[int, List[AffectedVersionAttribution]]:
        """Attributions of all sources, keyed by affected software id"""

    @abc.abstractmethod
    async def find_affected_software(self, affected: AffectedSoftware) -> Optional[AffectedSoftware]:
        """A persistent row semantically equal to `affected`, whatever it is associated with"""

    @abc.abstractmethod
    async def insert_affected_software(self, affected: AffectedSoftware) -> AffectedSoftware:
        pass

    @abc.abstractmethod
    async def has_attribution(self, vulnerability_id: int, affected_software_id: int,
                              source: Source) -> bool:
        pass

    @abc.abstractmethod
    async def insert_attribution(self, attribution: AffectedVersionAttribution) -> AffectedVersionAttribution:
        pass

    @abc.abstractmethod
    async def touch_attributions(self, vulnerability_id: int, affected_software_ids: Iterable[int],
                                 source: Source, seen_at: datetime) -> int:
        """Set last_seen on matching attributions; returns the number touched"""

    @abc.abstractmethod
    async def delete_attributions(self, vulnerability_id: int, affected_software_ids: Iterable[int],
                                  source: Source) -> int:
        pass

    @abc.abstractmethod
    async def set_affected_software(self, vulnerability_id: int, affected_software_ids: Iterable[int]):
        """Replace the association of a vulnerability with exactly these rows"""

    @abc.abstractmethod
    async def get_config_property(self, group_name: str, property_name: str) -> Optional[str]:
        pass

    @abc.abstractmethod
    async def set_config_property(self, group_name: str, property_name: str, value: Optional[str]):
        pass


class Store(abc.ABC):

    @abc.abstractmethod
    def transaction(self, lock_key: Optional[str] = None) -> AbstractAsyncContextManager:
        """Async context manager yielding a StoreSession"""

    async def close(self):
        pass
