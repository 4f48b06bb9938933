"""
Per-patient write serialization

Replace operations (delete-then-insert) for the same patient must not
interleave, most visibly the single photo slot. Each patient id gets its own
lock for the duration of a write; locks are dropped once nobody holds them.
"""
from contextlib import contextmanager
from threading import Lock
from typing import Dict


class PatientLocks:
    """Registry of reference-counted locks keyed by patient id"""

    def __init__(self):
        self._guard = Lock()
        self._locks: Dict[int, Lock] = {}
        self._holders: Dict[int, int] = {}

    @contextmanager
    def hold(self, patient_id: int):
        with self._guard:
            lock = self._locks.setdefault(patient_id, Lock())
            self._holders[patient_id] = self._holders.get(patient_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[patient_id] -= 1
                if self._holders[patient_id] == 0:
                    del self._holders[patient_id]
                    del self._locks[patient_id]

    def __len__(self):
        with self._guard:
            return len(self._locks)


patient_locks = PatientLocks()
