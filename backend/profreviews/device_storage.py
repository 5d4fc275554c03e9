"""
device_storage.py — Per-device key/value storage.

Anonymous visitors have no account, so whatever we remember about them is
keyed by the device id the client sends (``X-Device-Id``). The interface is a
small subset of what a mobile key/value store offers: get many keys, set many
keys, remove many keys.
"""
from typing import Dict, Iterable, Optional, Protocol
from sqlalchemy import Engine
from sqlmodel import Session, select
from .models import DeviceStorage


class KeyValueStore(Protocol):
    def multi_get(self, device_id: str, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        ...

    def multi_set(self, device_id: str, items: Dict[str, str]) -> None:
        ...

    def multi_remove(self, device_id: str, keys: Iterable[str]) -> None:
        ...


class MemoryKeyValueStore:
    """Process-local store. Used in tests and single-process development."""

    def __init__(self):
        self._data: Dict[str, Dict[str, str]] = {}

    def multi_get(self, device_id, keys):
        bucket = self._data.get(device_id, {})
        return {k: bucket.get(k) for k in keys}

    def multi_set(self, device_id, items):
        self._data.setdefault(device_id, {}).update(items)

    def multi_remove(self, device_id, keys):
        bucket = self._data.get(device_id)
        if not bucket:
            return
        for k in keys:
            bucket.pop(k, None)


class SqlKeyValueStore:
    """Store backed by the ``device_storage`` table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def multi_get(self, device_id, keys):
        keys = list(keys)
        result = {k: None for k in keys}
        with Session(self.engine) as session:
            rows = session.exec(
                select(DeviceStorage).where(
                    DeviceStorage.device_id == device_id,
                    DeviceStorage.key.in_(keys),
                )
            ).all()
            for row in rows:
                result[row.key] = row.value
        return result

    def multi_set(self, device_id, items):
        with Session(self.engine) as session:
            existing = {
                row.key: row
                for row in session.exec(
                    select(DeviceStorage).where(
                        DeviceStorage.device_id == device_id,
                        DeviceStorage.key.in_(list(items)),
                    )
                ).all()
            }
            for key, value in items.items():
                row = existing.get(key)
                if row:
                    row.value = value
                else:
                    row = DeviceStorage(device_id=device_id, key=key, value=value)
                session.add(row)
            session.commit()

    def multi_remove(self, device_id, keys):
        with Session(self.engine) as session:
            rows = session.exec(
                select(DeviceStorage).where(
                    DeviceStorage.device_id == device_id,
                    DeviceStorage.key.in_(list(keys)),
                )
            ).all()
            for row in rows:
                session.delete(row)
            session.commit()
