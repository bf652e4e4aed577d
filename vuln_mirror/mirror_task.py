"""
NVD Mirror Task

APPROACH:
1. Read the "modified since" checkpoint from the store
2. Page through the NVD CVE API 2.0, starting at the checkpoint
3. Convert each CVE on the paging task and hand it to a single writer lane
4. The writer reconciles the vulnerability, then its affected software
5. After the feed is exhausted without a fatal error, advance the checkpoint
   to the newest lastModified seen and notify the indexer (COMMIT)

A fatal feed error stops paging; records already queued are still written but
the checkpoint stays where it was, so the next run requests the same window.
A record that fails to convert or to write is logged and counted, and does not
end the run.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config.settings import Settings, resolve_api_key, trim_to_none
from .events import EventService, IndexAction, IndexEvent, NistMirrorEvent
from .models import AffectedSoftware, Vulnerability
from .persistence.base import Store
from .sources.base.base_fetcher import BaseFeedClient
from .sources.base.exceptions import (ConfigException, ParseException,
                                      VulnSourceException)
from .sources.nvd.converter import convert_item
from .sources.nvd.nvd_client import NvdCveClient
from .sync.affected_software_sync import AffectedSoftwareReconciler
from .sync.checkpoint import CheckpointStore
from .sync.dispatcher import SyncDispatcher
from .sync.vulnerability_sync import VulnerabilityReconciler

logger = logging.getLogger(__name__)

Record = Tuple[Vulnerability, List[AffectedSoftware]]
ClientFactory = Callable[[str, Optional[str], int], BaseFeedClient]

PROGRESS_INTERVAL = 1000


class NistMirrorTask:
    """Mirrors the NVD into the store, one run per call of `run()`"""

    def __init__(self, store: Store, settings: Optional[Settings] = None,
                 event_service: Optional[EventService] = None,
                 client_factory: Optional[ClientFactory] = None,
                 max_queue_size: Optional[int] = None):
        self.store = store
        self.settings = settings or Settings()
        self.event_service = event_service
        self.client_factory = client_factory or self.create_client
        self.max_queue_size = self.settings.MIRROR_QUEUE_MAX_SIZE if max_queue_size is None else max_queue_size

        self.checkpoint = CheckpointStore(store)
        self.vulnerability_reconciler = VulnerabilityReconciler(store, event_service)
        self.affected_software_reconciler = AffectedSoftwareReconciler(store)
        self.stats: Dict[str, int] = {}

    def create_client(self, api_url: str, api_key: Optional[str], last_modified_epoch: int) -> BaseFeedClient:
        since = datetime.fromtimestamp(max(last_modified_epoch, 0), tz=timezone.utc)
        logger.info(f"🎯 Mirroring CVEs that were modified since {since.isoformat()}")
        return NvdCveClient(
            api_url,
            api_key=api_key,
            last_modified_epoch=last_modified_epoch,
            results_per_page=self.settings.NVD_RESULTS_PER_PAGE,
            timeout=self.settings.NVD_REQUEST_TIMEOUT,
        )

    def register(self, event_service: EventService):
        """Run the mirror whenever a NistMirrorEvent is dispatched"""
        self.event_service = self.event_service or event_service
        self.vulnerability_reconciler.event_service = self.event_service
        event_service.subscribe(NistMirrorEvent, self.inform)

    async def inform(self, event):
        if not isinstance(event, NistMirrorEvent):
            return
        result = await self.run()
        if not result['success']:
            # Lets the event service fire the event's failure follow-ups
            raise VulnSourceException(f"NVD mirroring failed: {result['error']}", source_name='nvd')

    def _reset_stats(self):
        self.stats = {
            'records_received': 0,
            'records_submitted': 0,
            'parse_failed': 0,
            'created': 0,
            'updated': 0,
            'unchanged': 0,
            'affected_software_added': 0,
            'affected_software_removed': 0,
        }

    async def synchronize(self, record: Record):
        """Writer lane: reconcile one converted CVE"""
        vuln, affected = record
        persistent, outcome = await self.vulnerability_reconciler.reconcile(vuln)
        self.stats[outcome.value] += 1

        result = await self.affected_software_reconciler.reconcile(persistent, affected)
        self.stats['affected_software_added'] += len(result.added)
        self.stats['affected_software_removed'] += len(result.removed)

    async def _mirror(self, client: BaseFeedClient, dispatcher: SyncDispatcher):
        async with client:
            async with dispatcher:
                while client.has_next():
                    for item in await client.next():
                        self.stats['records_received'] += 1
                        try:
                            record = convert_item(item)
                        except ParseException as e:
                            self.stats['parse_failed'] += 1
                            logger.warning(f"⚠️ Skipping unconvertible record: {e}")
                            continue
                        if record is None:
                            continue

                        await dispatcher.submit(record)
                        self.stats['records_submitted'] += 1
                        if self.stats['records_submitted'] % PROGRESS_INTERVAL == 0:
                            logger.info(f"📊 Submitted {self.stats['records_submitted']:,} CVEs "
                                        f"({dispatcher.pending:,} waiting to be written)")

    async def run(self) -> Dict[str, Any]:
        """
        Execute one mirror run

        Returns:
            Summary dictionary; `success` is False when the run failed fatally
            and the checkpoint was left unchanged
        """
        logger.info("🚀 Starting NVD mirroring...")
        start_time = datetime.now(timezone.utc)
        started = time.monotonic()
        self._reset_stats()

        summary: Dict[str, Any] = {
            'source_name': 'nvd',
            'success': False,
            'status': 'failed',
            'error': None,
            'start_time': start_time.isoformat(),
            'previous_checkpoint': None,
            'last_modified': None,
            'checkpoint_advanced': False,
            'write_failed': 0,
        }

        dispatcher = SyncDispatcher(self.synchronize, max_queue_size=self.max_queue_size,
                                    describe=lambda record: record[0].vuln_id, name="nvd-mirror")
        try:
            api_url = trim_to_none(self.settings.NVD_API_URL)
            if api_url is None:
                raise ConfigException("No API URL configured", source_name='nvd', config_key='NVD_API_URL')
            api_key = resolve_api_key(self.settings)

            previous_checkpoint = await self.checkpoint.load()
            summary['previous_checkpoint'] = previous_checkpoint

            client = self.client_factory(api_url, api_key, previous_checkpoint)
            await self._mirror(client, dispatcher)
            last_modified = client.last_updated

            summary['last_modified'] = last_modified.isoformat() if last_modified else None
            if await self.checkpoint.advance(last_modified):
                summary['checkpoint_advanced'] = True
                if self.event_service is not None:
                    await self.event_service.dispatch(IndexEvent(IndexAction.COMMIT, entity="Vulnerability"))

            summary['success'] = True
        except Exception as e:
            logger.error(f"❌ An unexpected error occurred while mirroring the NVD: {e}", exc_info=True)
            summary['error'] = str(e)
        finally:
            duration = time.monotonic() - started
            logger.info(f"⏱️ Mirroring completed in {duration:.2f} seconds")

        summary.update(self.stats)
        summary['end_time'] = datetime.now(timezone.utc).isoformat()
        summary['duration_seconds'] = duration
        summary['write_failed'] = dispatcher.failed
        if summary['success']:
            summary['status'] = 'success' if summary['write_failed'] == 0 else 'partial_success'

        self._log_summary(summary)
        return summary

    def _log_summary(self, summary: Dict[str, Any]):
        icon = "✅" if summary['success'] else "❌"
        logger.info(f"{icon} NVD mirroring {summary['status']}")
        logger.info(f"   • CVEs received: {summary.get('records_received', 0):,}")
        logger.info(f"   • Created: {summary.get('created', 0):,}  Updated: {summary.get('updated', 0):,}  "
                    f"Unchanged: {summary.get('unchanged', 0):,}")
        logger.info(f"   • Conversion errors: {summary.get('parse_failed', 0)}  "
                    f"Write errors: {summary['write_failed']}")
        if summary['checkpoint_advanced']:
            logger.info(f"   • Checkpoint advanced to {summary['last_modified']}")
