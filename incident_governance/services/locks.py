"""
Keyed write locks.

Serialises governance writes inside one process:

    quarter:<id>   override upsert/delete, finalize, unfinalize
    incident:<id>  lifecycle transitions, first response

Across processes the services additionally take a row lock
(``SELECT ... FOR UPDATE``) on the quarter / incident row before reading.

Registry entries are reference counted and removed when the last holder
or waiter leaves, so the registry only holds keys that are in use.

Usage:
    from incident_governance.services.locks import quarter_lock

    with quarter_lock(quarter_id):
        ...
"""

import threading
from contextlib import contextmanager

# key -> [lock, number of threads holding or waiting on it]
_registry: dict[str, list] = {}
_registry_lock = threading.Lock()


def _acquire_entry(key: str) -> threading.RLock:
    with _registry_lock:
        entry = _registry.get(key)
        if entry is None:
            entry = _registry[key] = [threading.RLock(), 0]
        entry[1] += 1
        return entry[0]


def _release_entry(key: str) -> None:
    with _registry_lock:
        entry = _registry[key]
        entry[1] -= 1
        if entry[1] == 0:
            del _registry[key]


@contextmanager
def keyed_lock(key: str):
    """Hold the lock for ``key``; the entry is dropped once nobody uses it."""
    lock = _acquire_entry(key)
    try:
        with lock:
            yield
    finally:
        _release_entry(key)


def quarter_lock(quarter_id: str):
    return keyed_lock(f"quarter:{quarter_id}")


def incident_lock(incident_id: str):
    return keyed_lock(f"incident:{incident_id}")
