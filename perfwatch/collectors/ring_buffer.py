"""
Request Ring Buffer
===================
Fixed-capacity FIFO of RequestRecords shared by concurrent request handlers.

Concurrency contract:
    - append() and snapshot() hold the same lock, so an append is never lost
      and a snapshot is a consistent point-in-time copy.
    - Readers sort / aggregate the returned list outside the lock.
    - len(buffer) <= capacity at all times; the oldest record is evicted first.
"""
import threading
from collections import deque
from typing import List

from perfwatch.models.request_record import RequestRecord


class RequestRingBuffer:
    """
    Thread-safe bounded store for sampled request records.

    Usage:
        buffer = RequestRingBuffer(capacity=1000)
        buffer.append(record)
        records = buffer.snapshot()
    """

    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._records: deque[RequestRecord] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._total_appended = 0

    def append(self, record: RequestRecord) -> None:
        """Append a record, evicting the oldest when full."""
        with self._lock:
            self._records.append(record)
            self._total_appended += 1

    def snapshot(self) -> List[RequestRecord]:
        """Point-in-time copy, oldest first."""
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    @property
    def total_appended(self) -> int:
        """Records ever appended, including evicted ones."""
        return self._total_appended

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
