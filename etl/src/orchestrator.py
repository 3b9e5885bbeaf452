"""
Sync Orchestrator Module
Coordinates the synchronization run: walks the trailing month window,
fetches and extracts each dump, reconciles records batch by batch, feeds
touched contracts to the derived-entity extractors and keeps the checkpoint
current so an interrupted run resumes where it stopped.
"""

import json
import logging
import random
import traceback
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .amendments import AmendmentSynthesizer
from .api_client import APIConfig, SmlouvyAPIClient
from .checkpoint import CheckpointStore
from .config import SyncConfig, get_api_config, get_db_config
from .database import Database
from .exceptions import CheckpointIOError, MalformedDumpError
from .extractor import load_dump_records
from .fetcher import DumpFetcher
from .geocoder import Geocoder, GeocoderConfig
from .processor import ContractReconciler
from .suppliers import SupplierExtractor

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Run state."""
    IDLE = "idle"
    FETCHING_MONTH = "fetching_month"
    EXTRACTING_RECORDS = "extracting_records"
    PROCESSING_BATCH = "processing_batch"
    EXTRACTING_DERIVED_ENTITIES = "extracting_derived_entities"
    MONTH_COMPLETE = "month_complete"
    RUN_COMPLETE = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncMetrics:
    """Track run timing and status."""

    def __init__(self):
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.status: SyncState = SyncState.IDLE

    def start(self):
        """Mark run start."""
        self.start_time = datetime.now()
        self.end_time = None

    def complete(self, status: SyncState):
        """Mark run end."""
        self.end_time = datetime.now()
        self.status = status

    @property
    def duration(self) -> Optional[timedelta]:
        """Calculate run duration."""
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration_seconds': self.duration.total_seconds() if self.duration else None,
            'status': self.status.value,
        }


def trailing_months(today: date, count: int) -> List[Tuple[int, int]]:
    """
    The `count` months ending with the month of `today`, newest first.

    Returns:
        List of (year, month)
    """
    months = []
    year, month = today.year, today.month
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return months


class SyncOrchestrator:
    """
    Main orchestrator for the synchronization run.
    """

    def __init__(
        self,
        config: SyncConfig = None,
        api_config: APIConfig = None,
        db_config: Dict[str, Any] = None,
        geocoder_config: GeocoderConfig = None,
        database: Database = None,
        fetcher: DumpFetcher = None,
        checkpoint: CheckpointStore = None,
        today: Optional[date] = None,
        rng: random.Random = None
    ):
        """
        Initialize the SyncOrchestrator.

        Args:
            config: Run configuration (defaults to SyncConfig.from_env())
            api_config: HTTP client configuration
            db_config: Database configuration (defaults to environment)
            geocoder_config: Geocoder configuration
            database: Pre-built Database (tests)
            fetcher: Pre-built DumpFetcher (tests)
            checkpoint: Pre-built CheckpointStore (tests)
            today: Reference date for the month window (defaults to today)
            rng: Random source for geocoder fallback and amendments
        """
        self.config = config or SyncConfig.from_env()
        self.api_config = api_config or get_api_config()
        self.geocoder_config = geocoder_config or GeocoderConfig()
        self.database = database or Database(db_config or get_db_config())
        self.fetcher = fetcher or DumpFetcher(
            output_dir=self.config.dump_dir, api_config=self.api_config
        )
        self.checkpoint = checkpoint or CheckpointStore(self.config.checkpoint_file)
        self.today = today
        self.rng = rng or random.Random()

        self.data_dir = self.config.data_dir
        self.metrics = SyncMetrics()

        self.suppliers = SupplierExtractor(self.database, self.config.suppliers_batch_size)
        self.amendments = AmendmentSynthesizer(
            self.database, rng=self.rng, batch_size=self.config.amendments_batch_size
        )

    def _set_state(self, state: SyncState):
        self.metrics.status = state
        logger.debug(f"State -> {state.value}")

    def month_window(self) -> List[Tuple[int, int]]:
        return trailing_months(self.today or date.today(), self.config.months_to_process)

    async def run_sync(self) -> Dict[str, Any]:
        """
        Run (or resume) the synchronization over the trailing month window.

        Returns:
            Run summary
        """
        self.metrics.start()
        store = self.checkpoint
        store.load(reset=self.config.force_reset)
        months = self.month_window()
        logger.info(f"Starting synchronization for months: {[f'{y}-{m:02d}' for y, m in months]}")

        if self.config.refresh_dumps:
            for year, month in months:
                self.fetcher.clear_cache(year, month)

        try:
            async with self.database as db, SmlouvyAPIClient(self.api_config) as client:
                await db.resolve_table_names()
                await db.prepare_contract_schema()

                geocoder = Geocoder(client, self.geocoder_config, rng=self.rng) if self.config.geocode else None
                reconciler = ContractReconciler(db, geocoder)

                if self.config.import_contracts:
                    for year, month in months:
                        if store.is_month_complete(year, month):
                            logger.info(f"Month {year}-{month:02d} already processed, skipping")
                            continue
                        try:
                            await self._process_month(reconciler, year, month)
                        except CheckpointIOError:
                            raise
                        except Exception as e:
                            message = f"Month {year}-{month:02d} error: {e}"
                            logger.error(message)
                            store.record_error(message)

                # Anything still pending (e.g. an interrupted previous run)
                await self._flush_derived_entities()

                if self.config.force_extract_suppliers:
                    logger.info("Forced supplier extraction over all contracts")
                    result = await self.suppliers.extract_all()
                    store.record_suppliers(result.inserted)

                if self.config.force_create_amendments:
                    logger.info("Forced amendment creation over all eligible contracts")
                    result = await self.amendments.create_for_all_eligible()
                    store.record_amendments(result.created)

        except CheckpointIOError as e:
            logger.error(f"Checkpoint could not be written, aborting: {e}")
            self.metrics.complete(SyncState.FAILED)
            raise
        except Exception as e:
            logger.error(f"Synchronization failed with error: {e}")
            logger.error(traceback.format_exc())
            store.record_error(f"Run error: {e}")
            self.metrics.complete(SyncState.FAILED)
            summary = self.summary(months)
            self._save_run_report(summary)
            return summary

        if all(store.is_month_complete(year, month) for year, month in months):
            store.mark_complete()
            self.metrics.complete(SyncState.RUN_COMPLETE)
        else:
            self.metrics.complete(SyncState.PARTIAL)

        summary = self.summary(months)
        self._save_run_report(summary)

        logger.info(f"Synchronization finished with status: {self.metrics.status.value}")
        logger.info(f"Duration: {self.metrics.duration}")
        return summary

    async def _process_month(self, reconciler: ContractReconciler, year: int, month: int):
        store = self.checkpoint
        batch_size = self.config.contracts_batch_size

        self._set_state(SyncState.FETCHING_MONTH)
        path = await self.fetcher.fetch_dump(year, month)

        self._set_state(SyncState.EXTRACTING_RECORDS)
        try:
            records = load_dump_records(path)
        except MalformedDumpError:
            # A broken download must not be served from the cache again
            self.fetcher.clear_cache(year, month)
            raise
        total_batches = (len(records) + batch_size - 1) // batch_size

        start_batch = store.resume_batch(year, month)
        store.begin_month(year, month, len(records))
        if start_batch:
            logger.info(f"Resuming {year}-{month:02d} at batch {start_batch + 1}/{total_batches}")

        for batch_index in range(start_batch, total_batches):
            self._set_state(SyncState.PROCESSING_BATCH)
            store.start_batch(batch_index)
            offset = batch_index * batch_size
            batch = records[offset:offset + batch_size]
            logger.info(
                f"Processing batch {batch_index + 1}/{total_batches} of {year}-{month:02d} "
                f"({len(batch)} records)"
            )

            try:
                result = await reconciler.process_batch(batch, first_index=offset)
            except Exception as e:
                message = f"Batch {batch_index + 1} of {year}-{month:02d} error: {e}"
                logger.error(message)
                store.record_error(message)
                continue
            store.finish_batch(batch_index, result)

            if len(store.pending_contract_ids()) >= self.config.derived_extraction_threshold:
                await self._flush_derived_entities()

        await self._flush_derived_entities()

        store.complete_month(year, month)
        self._set_state(SyncState.MONTH_COMPLETE)
        logger.info(f"Month {year}-{month:02d} complete")

    async def _flush_derived_entities(self):
        """Run supplier/amendment extraction for contracts touched since the last flush."""
        store = self.checkpoint
        pending = store.pending_contract_ids()
        if not pending:
            return

        self._set_state(SyncState.EXTRACTING_DERIVED_ENTITIES)
        await self._extract_derived(pending)
        store.clear_pending_contract_ids(pending)

    async def _extract_derived(self, contract_ids: Sequence[int]):
        store = self.checkpoint

        if self.config.extract_suppliers:
            try:
                result = await self.suppliers.extract(contract_ids)
                store.record_suppliers(result.inserted)
            except CheckpointIOError:
                raise
            except Exception as e:
                message = f"Supplier extraction error: {e}"
                logger.error(message)
                store.record_error(message)

        if self.config.create_amendments:
            try:
                result = await self.amendments.create_for(contract_ids)
                store.record_amendments(result.created)
            except CheckpointIOError:
                raise
            except Exception as e:
                message = f"Amendment creation error: {e}"
                logger.error(message)
                store.record_error(message)

    async def extract_suppliers_only(self) -> Dict[str, Any]:
        """
        Register suppliers of every contract in the store, outside a sync run.

        Returns:
            Extraction counters
        """
        self.metrics.start()
        async with self.database as db:
            await db.resolve_table_names()
            await db.prepare_contract_schema()
            result = await self.suppliers.extract_all()
        self.metrics.complete(SyncState.RUN_COMPLETE)
        return {**self.metrics.to_dict(), 'suppliers': result.to_dict()}

    async def create_amendments_only(self, limit: Optional[int] = None) -> Dict[str, Any]:
        """
        Create amendments for all eligible contracts, outside a sync run.

        Args:
            limit: Maximum number of contracts to handle

        Returns:
            Creation counters
        """
        self.metrics.start()
        async with self.database as db:
            await db.resolve_table_names()
            result = await self.amendments.create_for_all_eligible(limit=limit)
        self.metrics.complete(SyncState.RUN_COMPLETE)
        return {
            **self.metrics.to_dict(),
            'amendments': {
                'contracts': result.contracts,
                'created': result.created,
                'errors': result.errors,
            },
        }

    def summary(self, months: List[Tuple[int, int]]) -> Dict[str, Any]:
        state = self.checkpoint.state
        return {
            **self.metrics.to_dict(),
            'months': [f"{year}-{month:02d}" for year, month in months],
            'months_completed': sum(
                1 for year, month in months if state.is_month_complete(year, month)
            ),
            'contracts': {
                'total': state.total_records,
                'processed': state.processed_records,
                'new': state.new_contracts,
                'updated': state.updated_contracts,
                'skipped': state.skipped_contracts,
                'errors': state.error_contracts,
            },
            'suppliers': state.extracted_suppliers,
            'amendments': state.created_amendments,
            'errors': list(state.errors),
        }

    def _save_run_report(self, summary: Dict[str, Any]):
        """Save run report."""
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        report_path = self.data_dir / 'reports'

        try:
            report_path.mkdir(parents=True, exist_ok=True)
            file_path = report_path / f"sync_report_{timestamp}.json"
            report = dict(summary)
            report['timestamp'] = timestamp
            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(report, f, ensure_ascii=False, indent=2, default=str)
        except OSError as e:
            logger.error(f"Could not save run report: {e}")
            return

        logger.info(f"Saved run report to {file_path}")
