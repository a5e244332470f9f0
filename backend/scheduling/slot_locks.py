import logging
from contextlib import contextmanager
from threading import Lock
from typing import Iterator

logger = logging.getLogger(__name__)


def slot_key(slot_date: str, start_time: str) -> str:
    return f'{slot_date}-{start_time}'


class _SlotLockEntry:
    __slots__ = ('lock', 'holders')

    def __init__(self) -> None:
        self.lock = Lock()
        self.holders = 0


class SlotLockRegistry:
    """Advisory locks keyed by slot, created on demand and dropped when unused.

    Reservations for the same ``(date, start_time)`` are serialised; different
    slots never contend. Entries are reference counted, so the registry only
    ever holds keys that some caller is currently using.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._entries: dict[str, _SlotLockEntry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, key: str, blocking: bool = False) -> Iterator[bool]:
        """Yield True if the slot lock was acquired, False if another caller holds it."""
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _SlotLockEntry()
            entry.holders += 1

        acquired = entry.lock.acquire(blocking=blocking)
        try:
            if not acquired:
                logger.debug('Slot %s is already being reserved', key)
            yield acquired
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[key]
