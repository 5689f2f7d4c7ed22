"""Per-part and overall progress bookkeeping."""
from typing import Dict, Iterable, List

from ..errors import InvalidTransition
from ..models import PartDescriptor, PartProgressRecord, PartStatus


class ProgressAggregator:
    """
    Reducer over ``part_number -> PartProgressRecord``.

    Owned by a single task; part transfers report through a message
    channel instead of mutating records themselves.

    Overall percent only advances when a part completes; in-flight
    percentages are shown per part but not blended into the total.
    """

    def __init__(self):
        self._records: Dict[int, PartProgressRecord] = {}

    def initialize(self, parts: Iterable[PartDescriptor]) -> None:
        self._records = {
            part.part_number: PartProgressRecord(part_number=part.part_number, size=part.size)
            for part in parts
        }

    @property
    def total(self) -> int:
        return len(self._records)

    def record(self, part_number: int) -> PartProgressRecord:
        return self._records[part_number]

    def records(self) -> List[PartProgressRecord]:
        return [self._records[n] for n in sorted(self._records)]

    def on_part_started(self, part_number: int) -> PartProgressRecord:
        record = self._records[part_number]
        if record.status != PartStatus.PENDING:
            raise InvalidTransition(
                f"Part {part_number}: cannot start from {record.status.value}"
            )
        record.status = PartStatus.UPLOADING
        record.percent = 0
        return record

    def on_part_progress(self, part_number: int, percent: int) -> bool:
        """Apply a progress report. Returns False when it was ignored."""
        record = self._records.get(part_number)
        if record is None or record.status != PartStatus.UPLOADING:
            return False
        percent = max(0, min(100, int(percent)))
        if percent <= record.percent:
            return False
        record.percent = percent
        return True

    def on_part_completed(self, part_number: int) -> PartProgressRecord:
        record = self._records[part_number]
        if record.status != PartStatus.UPLOADING:
            raise InvalidTransition(
                f"Part {part_number}: cannot complete from {record.status.value}"
            )
        record.status = PartStatus.COMPLETED
        record.percent = 100
        return record

    def on_part_failed(self, part_number: int) -> PartProgressRecord:
        record = self._records[part_number]
        if record.status == PartStatus.COMPLETED:
            raise InvalidTransition(f"Part {part_number}: cannot fail after completion")
        record.status = PartStatus.FAILED
        return record

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in PartStatus}
        for record in self._records.values():
            counts[record.status.value] += 1
        return counts

    def overall_percent(self) -> int:
        if not self._records:
            return 0
        completed = sum(1 for r in self._records.values() if r.status == PartStatus.COMPLETED)
        # Round half up, like Math.round
        return (200 * completed + self.total) // (2 * self.total)

    def completed_bytes(self) -> int:
        return sum(r.size for r in self._records.values() if r.status == PartStatus.COMPLETED)
