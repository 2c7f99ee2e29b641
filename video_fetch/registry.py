"""Bookkeeping for transfers that are still being tracked for retries."""

from typing import Dict, Optional

from .models import TransferRecord


class TransferRegistry:
    """Maps platform transfer ids to their retry state.

    An id without a record is not tracked: late lifecycle events for it are
    ignored by the orchestrator.
    """

    def __init__(self) -> None:
        self._records: Dict[int, TransferRecord] = {}

    def put(self, transfer_id: int, record: TransferRecord) -> None:
        self._records[transfer_id] = record

    def get(self, transfer_id: int) -> Optional[TransferRecord]:
        return self._records.get(transfer_id)

    def delete(self, transfer_id: int) -> Optional[TransferRecord]:
        """Stop tracking ``transfer_id``. Returns the removed record, if any."""
        return self._records.pop(transfer_id, None)

    def clear(self) -> None:
        """Forget everything, e.g. transfers started by a previous run."""
        self._records.clear()

    def __contains__(self, transfer_id: object) -> bool:
        return transfer_id in self._records

    def __len__(self) -> int:
        return len(self._records)
