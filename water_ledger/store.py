"""
Process-wide ledger container with asynchronous, best-effort persistence.

Mutations happen synchronously on the in-memory Ledger; commit() then
schedules the durable write in the background. Storage failures are logged
and never raised, so a crash between a mutation and its write can lose that
mutation. A periodic task copies the ledger to a backup slot, which
initialize() falls back to when the primary slot is empty or unreadable.
"""

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Dict, Optional, Set

from .config import Settings, load_settings
from .datatypes import Ledger
from .errors import InvalidImportShape, StorageUnavailable, StoreNotReady
from .snapshot import dumps, loads

logger = logging.getLogger(__name__)


class KeyValueStorage:
    """Durable string slots; implementations raise StorageUnavailable on I/O failure"""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonDirectoryStorage(KeyValueStorage):
    """One <key>.json file per slot; blocking file I/O runs in a worker thread"""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def _read(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding='utf-8')

    def _write(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        tmp = path.with_name(path.name + '.tmp')
        tmp.write_text(value, encoding='utf-8')
        tmp.replace(path)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._read, key)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageUnavailable(f"Cannot read {self.path_for(key)}: {e}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._write, key, value)
        except OSError as e:
            raise StorageUnavailable(f"Cannot write {self.path_for(key)}: {e}") from e


class LedgerStore:
    def __init__(self, storage: KeyValueStorage, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or load_settings()
        self.last_error: Optional[StorageUnavailable] = None
        self._ledger: Optional[Ledger] = None
        self._pending: Set[asyncio.Task] = set()
        self._backup_task: Optional[asyncio.Task] = None

    @property
    def ready(self) -> bool:
        return self._ledger is not None

    @property
    def ledger(self) -> Ledger:
        if self._ledger is None:
            raise StoreNotReady()
        return self._ledger

    async def initialize(self) -> Ledger:
        """
        Load the primary slot, recovering from the backup slot if needed.

        Never raises on storage trouble: the store then starts from an empty
        ledger at the default price.
        """
        primary_key = self.settings.primary_key
        ledger = await self._read_slot(primary_key)

        if ledger is None or not ledger.customers:
            backup = await self._read_slot(self.settings.backup_key)
            if backup is not None and backup.customers:
                logger.warning(f"Primary ledger is empty; restoring {len(backup.customers)} customers from backup")
                ledger = backup
                await self._write(primary_key, dumps(ledger))

        if ledger is None:
            logger.info("No stored ledger found, starting empty")
            ledger = Ledger(customers=[], price_per_ton=self.settings.default_price_per_ton)

        self._ledger = ledger
        return ledger

    async def _read_slot(self, key: str) -> Optional[Ledger]:
        try:
            text = await self.storage.get(key)
        except StorageUnavailable as e:
            self.last_error = e
            logger.error(f"Storage unavailable while reading {key}: {e}")
            return None
        if not text:
            return None
        try:
            return loads(text, self.settings.default_price_per_ton)
        except InvalidImportShape as e:
            logger.warning(f"Stored snapshot {key} is unreadable: {e}")
            return None

    async def _write(self, key: str, text: str) -> bool:
        try:
            await self.storage.set(key, text)
        except StorageUnavailable as e:
            self.last_error = e
            logger.error(f"Storage unavailable while writing {key}: {e}")
            return False
        logger.debug(f"Saved {key} ({len(text)} bytes)")
        return True

    def commit(self) -> asyncio.Task:
        """Schedule a background write of the current ledger to the primary slot"""
        text = dumps(self.ledger)
        task = asyncio.create_task(self._write(self.settings.primary_key, text))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def replace(self, ledger: Ledger) -> asyncio.Task:
        """Swap in a whole new ledger (imports) and persist it"""
        self._ledger = ledger
        logger.info(f"Ledger replaced: {len(ledger.customers)} customers, price per ton {ledger.price_per_ton}")
        return self.commit()

    async def backup(self) -> bool:
        return await self._write(self.settings.backup_key, dumps(self.ledger))

    async def _backup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.backup()

    def start_backup_task(self, interval: Optional[float] = None) -> asyncio.Task:
        if self._backup_task is not None and not self._backup_task.done():
            return self._backup_task
        interval = interval or self.settings.backup_interval_seconds
        self._backup_task = asyncio.create_task(self._backup_loop(interval))
        logger.debug(f"Backup every {interval}s")
        return self._backup_task

    async def stop_backup_task(self) -> None:
        task, self._backup_task = self._backup_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def flush(self) -> None:
        """Wait for every scheduled write to finish"""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def close(self) -> None:
        await self.stop_backup_task()
        await self.flush()
