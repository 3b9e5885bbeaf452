"""
Checkpoint Store Module
Persists the progress of a synchronization run so an interrupted run can
resume where it stopped instead of starting over.

The store is the only component that reads or writes the checkpoint file.
Callers mutate progress through its methods, each of which saves immediately.
"""

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import CheckpointIOError
from .models import BatchResult

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 2
# Version 1 files carry a single current_month/current_batch pair
READABLE_VERSIONS = (1, CHECKPOINT_VERSION)


def month_key(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


@dataclass
class CheckpointState:
    """Serializable progress of one synchronization run."""
    version: int = CHECKPOINT_VERSION
    last_updated: Optional[str] = None
    processed_months: List[Dict[str, Any]] = field(default_factory=list)
    current_month: Optional[Dict[str, int]] = None
    current_batch: int = 0
    batch_offsets: Dict[str, int] = field(default_factory=dict)
    total_records: int = 0
    processed_records: int = 0
    new_contracts: int = 0
    updated_contracts: int = 0
    skipped_contracts: int = 0
    error_contracts: int = 0
    extracted_suppliers: int = 0
    created_amendments: int = 0
    collected_contract_ids: List[int] = field(default_factory=list)
    pending_contract_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    is_complete: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckpointState":
        """Build a state from a decoded checkpoint; unknown keys are ignored."""
        known = {name for name in cls.__dataclass_fields__}
        state = cls(**{key: value for key, value in data.items() if key in known})
        if not state.batch_offsets and state.current_month:
            key = month_key(state.current_month['year'], state.current_month['month'])
            state.batch_offsets = {key: state.current_batch}
        state.version = CHECKPOINT_VERSION
        return state

    def is_month_complete(self, year: int, month: int) -> bool:
        return any(
            entry.get('year') == year and entry.get('month') == month and entry.get('completed')
            for entry in self.processed_months
        )


class CheckpointStore:
    """
    Owns the checkpoint file and the in-memory state loaded from it.
    """

    def __init__(self, path: Path):
        """
        Initialize the CheckpointStore.

        Args:
            path: Location of the JSON checkpoint file
        """
        self.path = Path(path)
        self.state = CheckpointState()

    def load(self, reset: bool = False) -> CheckpointState:
        """
        Load the checkpoint from disk.

        A fresh state is used when the file is missing, unreadable, of another
        version, when a reset is requested, or when the stored run completed.

        Args:
            reset: Discard any stored progress

        Returns:
            The loaded (or fresh) state
        """
        self.state = CheckpointState()

        if reset:
            logger.info("Checkpoint reset requested, starting from scratch")
            return self.state

        if not self.path.exists():
            logger.info(f"No checkpoint at {self.path}, starting a new run")
            return self.state

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Could not read checkpoint {self.path}: {e}")
            return self.state

        if not isinstance(data, dict):
            logger.error(f"Checkpoint {self.path} does not contain an object, ignoring it")
            return self.state

        if data.get('version') not in READABLE_VERSIONS:
            logger.warning(
                f"Checkpoint version {data.get('version')} does not match "
                f"{CHECKPOINT_VERSION}, starting a new run"
            )
            return self.state

        try:
            loaded = CheckpointState.from_dict(data)
        except (TypeError, KeyError) as e:
            logger.error(f"Checkpoint {self.path} has an unexpected shape: {e}")
            return self.state

        if loaded.is_complete:
            logger.info("Previous run completed, starting a new one")
            return self.state

        self.state = loaded
        logger.info(
            f"Resuming from checkpoint: {len(loaded.processed_months)} months done, "
            f"batch offsets {loaded.batch_offsets}"
        )
        return self.state

    def save(self):
        """
        Atomically write the state to disk.

        Raises:
            CheckpointIOError: If the file cannot be written
        """
        self.state.last_updated = datetime.now().isoformat()
        directory = self.path.parent

        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(directory)
            )
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(self.state.to_dict(), f, ensure_ascii=False, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise CheckpointIOError(f"Could not write checkpoint {self.path}: {e}") from e

        logger.debug(f"Checkpoint saved to {self.path}")

    # Queries

    def is_month_complete(self, year: int, month: int) -> bool:
        return self.state.is_month_complete(year, month)

    def resume_batch(self, year: int, month: int) -> int:
        """Index of the first batch to process for the given month."""
        return self.state.batch_offsets.get(month_key(year, month), 0)

    # Mutators

    def begin_month(self, year: int, month: int, total_records: int):
        """
        Mark a month as in progress.

        Every month keeps its own batch offset, so entering another month
        first does not lose it. Totals are only counted on first entry.
        """
        key = month_key(year, month)
        state = self.state
        if key not in state.batch_offsets:
            state.batch_offsets[key] = 0
            state.total_records += total_records
        state.current_month = {'year': year, 'month': month}
        state.current_batch = state.batch_offsets[key]
        self.save()

    def _set_offset(self, batch_index: int):
        state = self.state
        state.current_batch = batch_index
        if state.current_month is not None:
            key = month_key(state.current_month['year'], state.current_month['month'])
            state.batch_offsets[key] = batch_index

    def start_batch(self, batch_index: int):
        self._set_offset(batch_index)
        self.save()

    def finish_batch(self, batch_index: int, result: BatchResult):
        """Fold a batch result into the running totals and advance the offset."""
        self._set_offset(batch_index + 1)
        state = self.state
        state.processed_records += result.processed
        state.new_contracts += result.new
        state.updated_contracts += result.updated
        state.skipped_contracts += result.skipped
        state.error_contracts += result.errors
        state.errors.extend(result.error_messages)

        seen = set(state.collected_contract_ids)
        for contract_id in result.contract_ids:
            if contract_id not in seen:
                state.collected_contract_ids.append(contract_id)
                seen.add(contract_id)
        pending = set(state.pending_contract_ids)
        for contract_id in result.contract_ids:
            if contract_id not in pending:
                state.pending_contract_ids.append(contract_id)
                pending.add(contract_id)

        self.save()

    def record_error(self, message: str):
        self.state.errors.append(message)
        self.save()

    def record_suppliers(self, count: int):
        self.state.extracted_suppliers += count
        self.save()

    def record_amendments(self, count: int):
        self.state.created_amendments += count
        self.save()

    def pending_contract_ids(self) -> List[int]:
        """IDs touched by this run that still await derived-entity extraction."""
        return list(self.state.pending_contract_ids)

    def clear_pending_contract_ids(self, contract_ids: List[int]):
        done = set(contract_ids)
        self.state.pending_contract_ids = [
            contract_id for contract_id in self.state.pending_contract_ids
            if contract_id not in done
        ]
        self.save()

    def complete_month(self, year: int, month: int):
        self.state.processed_months = [
            entry for entry in self.state.processed_months
            if not (entry.get('year') == year and entry.get('month') == month)
        ]
        self.state.processed_months.append({'year': year, 'month': month, 'completed': True})
        self.state.batch_offsets.pop(month_key(year, month), None)
        self.state.current_month = None
        self.state.current_batch = 0
        self.save()

    def mark_complete(self):
        self.state.is_complete = True
        self.state.batch_offsets = {}
        self.state.current_month = None
        self.state.current_batch = 0
        self.save()
