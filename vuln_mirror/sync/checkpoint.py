"""
Mirror watermark persisted as a config property.

The value is the lastModified time (epoch seconds) of the newest CVE that a
completed run has mirrored. It only moves when a run finished without a fatal
error; a run that fails leaves it alone so the next run re-requests the window.
"""

import logging
from datetime import datetime
from typing import Optional

from ..persistence.base import Store

logger = logging.getLogger(__name__)

CHECKPOINT_GROUP = "vuln-source"
CHECKPOINT_PROPERTY = "nvd.api.last.modified.epoch.seconds"


class CheckpointStore:

    def __init__(self, store: Store, group_name: str = CHECKPOINT_GROUP,
                 property_name: str = CHECKPOINT_PROPERTY):
        self.store = store
        self.group_name = group_name
        self.property_name = property_name

    async def load(self) -> int:
        """Epoch seconds to mirror from; 0 when unset or not a number"""
        async with self.store.transaction() as session:
            value = await session.get_config_property(self.group_name, self.property_name)

        value = value.strip() if value else ''
        if not value.isdigit():
            if value:
                logger.warning(f"⚠️ Ignoring non-numeric checkpoint {self.property_name}={value!r}")
            return 0
        return int(value)

    async def advance(self, last_modified: Optional[datetime]) -> bool:
        """
        Persist `last_modified` as the new watermark.

        Returns False without touching the store when there is nothing to record.
        """
        if last_modified is None:
            logger.debug("Encountered no modified CVEs")
            return False

        logger.debug(f"Latest captured modification date: {last_modified.isoformat()}")
        async with self.store.transaction() as session:
            await session.set_config_property(self.group_name, self.property_name,
                                              str(int(last_modified.timestamp())))
        return True

    async def reset(self):
        """Forget the watermark; the next run mirrors the whole feed"""
        async with self.store.transaction() as session:
            await session.set_config_property(self.group_name, self.property_name, None)
        logger.info(f"🔄 Reset checkpoint {self.group_name}/{self.property_name}")
