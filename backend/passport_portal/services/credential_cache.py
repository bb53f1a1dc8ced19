"""
Access-Credential Cache - timed read URLs for the documents of an application

Each document slot of an application being viewed holds one of four states:

- absent:  the slot pointer is empty, nothing to sign
- pending: a signed URL has been requested and has not resolved yet
- error:   signing failed or the pointer holds no storage path
- ready:   a signed URL and its expiry

Signed URLs expire after SIGNED_URL_TTL_SECONDS. The registry re-signs every
open application on a single SIGNED_URL_REFRESH_SECONDS interval, which is
shorter than the TTL, so a viewer never holds an expired URL.
"""

import asyncio
import enum
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from passport_portal.core.config import settings
from passport_portal.core.exceptions import CredentialError, StorageError
from passport_portal.core.logging_config import logger
from passport_portal.models.document import DocumentSlot
from passport_portal.services.storage_service import StorageService, storage_service


class CredentialState(str, enum.Enum):
    ABSENT = "absent"
    PENDING = "pending"
    ERROR = "error"
    READY = "ready"


@dataclass
class SlotCredential:
    state: CredentialState
    url: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def absent(cls) -> "SlotCredential":
        return cls(CredentialState.ABSENT)

    @classmethod
    def pending(cls) -> "SlotCredential":
        return cls(CredentialState.PENDING)

    @classmethod
    def failed(cls, error: CredentialError) -> "SlotCredential":
        return cls(CredentialState.ERROR, error=error.message)

    @classmethod
    def ready(cls, url: str, expires_at: datetime) -> "SlotCredential":
        return cls(CredentialState.READY, url=url, expires_at=expires_at)


@dataclass
class CredentialCache:
    """Per-application slot credentials"""
    application_id: str
    storage: StorageService = field(default_factory=lambda: storage_service)
    ttl_seconds: int = field(default_factory=lambda: settings.SIGNED_URL_TTL_SECONDS)
    pointers: Dict[DocumentSlot, Optional[str]] = field(default_factory=dict)
    credentials: Dict[DocumentSlot, SlotCredential] = field(default_factory=dict)
    last_accessed: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_accessed = time.monotonic()

    def get(self, slot: DocumentSlot) -> SlotCredential:
        return self.credentials.get(slot, SlotCredential.absent())

    def snapshot(self) -> Dict[DocumentSlot, SlotCredential]:
        return {slot: self.get(slot) for slot in DocumentSlot}

    def _is_current(self, slot: DocumentSlot, pointer: Optional[str]) -> bool:
        return self.pointers.get(slot) == pointer

    async def _issue(self, slot: DocumentSlot, pointer: str) -> Tuple[DocumentSlot, str, SlotCredential]:
        path = self.storage.extract_path(pointer)
        if not path:
            error = CredentialError(slot.value, "Stored document URL has no storage path")
            logger.warning(f"[Credentials] {self.application_id}/{slot.value}: {error.message}")
            return slot, pointer, SlotCredential.failed(error)

        try:
            url = await self.storage.issue_timed_access(path, self.ttl_seconds)
        except StorageError as e:
            error = CredentialError(slot.value, e.message)
            logger.warning(f"[Credentials] {self.application_id}/{slot.value}: {error.message}")
            return slot, pointer, SlotCredential.failed(error)

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)
        return slot, pointer, SlotCredential.ready(url, expires_at)

    async def refresh_all(self, pointers: Optional[Dict[DocumentSlot, Optional[str]]] = None) -> Dict[DocumentSlot, SlotCredential]:
        """
        Re-sign every slot with a pointer.

        All requests run concurrently and each result is committed as soon as
        it arrives, so one slow or failing slot does not hold back the rest.
        A ready credential stays visible until its replacement arrives. A
        result is dropped when the slot's pointer changed while it was being
        signed.
        """
        previous = dict(self.pointers)
        if pointers is not None:
            self.pointers = dict(pointers)

        requests = []
        for slot in DocumentSlot:
            pointer = self.pointers.get(slot)
            if not pointer or not pointer.strip():
                self.credentials[slot] = SlotCredential.absent()
                continue
            if previous.get(slot) != pointer or self.get(slot).state != CredentialState.READY:
                self.credentials[slot] = SlotCredential.pending()
            requests.append(self._issue(slot, pointer))

        for next_result in asyncio.as_completed(requests):
            slot, pointer, credential = await next_result
            if self._is_current(slot, pointer):
                self.credentials[slot] = credential
            else:
                logger.debug(f"[Credentials] {self.application_id}/{slot.value}: dropped result for a replaced pointer")

        ready = sum(1 for c in self.credentials.values() if c.state == CredentialState.READY)
        logger.debug(f"[Credentials] {self.application_id}: {ready}/{len(requests)} slots ready")
        return self.snapshot()

    async def refresh_slot(self, slot: DocumentSlot, pointer: Optional[str]) -> SlotCredential:
        """Re-sign one slot right after its pointer changed"""
        self.pointers[slot] = pointer
        if not pointer or not pointer.strip():
            self.credentials[slot] = SlotCredential.absent()
            return self.credentials[slot]

        self.credentials[slot] = SlotCredential.pending()
        _, _, credential = await self._issue(slot, pointer)
        if not self._is_current(slot, pointer):
            return self.get(slot)
        self.credentials[slot] = credential
        return credential


class CredentialCacheRegistry:
    """
    Holds one CredentialCache per application being viewed and drives the
    shared refresh interval.
    """

    def __init__(
        self,
        storage: Optional[StorageService] = None,
        refresh_interval_seconds: Optional[int] = None,
        idle_seconds: Optional[int] = None,
    ):
        self.storage = storage or storage_service
        self.refresh_interval = refresh_interval_seconds or settings.SIGNED_URL_REFRESH_SECONDS
        self.idle_seconds = idle_seconds or settings.CREDENTIAL_CACHE_IDLE_SECONDS
        self._caches: Dict[str, CredentialCache] = {}

        self.running = False
        self._task: Optional[asyncio.Task] = None

    def get(self, application_id: str) -> Optional[CredentialCache]:
        return self._caches.get(str(application_id))

    def __len__(self) -> int:
        return len(self._caches)

    async def open(self, application_id: str, pointers: Dict[DocumentSlot, Optional[str]]) -> CredentialCache:
        """
        Cache for an application, created and fully populated on first view.

        An existing cache re-signs only the slots whose pointer changed since
        it was last populated.
        """
        application_id = str(application_id)
        cache = self._caches.get(application_id)

        if cache is None:
            cache = CredentialCache(application_id=application_id, storage=self.storage)
            self._caches[application_id] = cache
            await cache.refresh_all(pointers)
        else:
            changed = [slot for slot in DocumentSlot if cache.pointers.get(slot) != pointers.get(slot)]
            if changed:
                await asyncio.gather(*(cache.refresh_slot(slot, pointers.get(slot)) for slot in changed))

        cache.touch()
        return cache

    def close(self, application_id: str) -> bool:
        """Drop an application's cache when its viewer goes away"""
        return self._caches.pop(str(application_id), None) is not None

    def evict_idle(self, now: Optional[float] = None) -> int:
        now = time.monotonic() if now is None else now
        idle = [app_id for app_id, cache in self._caches.items()
                if now - cache.last_accessed > self.idle_seconds]
        for app_id in idle:
            del self._caches[app_id]
        if idle:
            logger.info(f"[Credentials] Evicted {len(idle)} idle credential caches")
        return len(idle)

    async def refresh_open_caches(self) -> int:
        """Re-sign every slot of every open application"""
        caches = list(self._caches.values())
        if not caches:
            return 0
        await asyncio.gather(*(cache.refresh_all() for cache in caches))
        logger.info(f"[Credentials] Refreshed signed URLs for {len(caches)} applications")
        return len(caches)

    async def start(self):
        """Start the background refresh loop"""
        if self.running:
            logger.warning("[Credentials] Refresh loop already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info(f"[Credentials] Started - refresh every {self.refresh_interval}s, idle eviction after {self.idle_seconds}s")

    async def stop(self):
        """Stop the refresh loop"""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("[Credentials] Stopped")

    async def _refresh_loop(self):
        while self.running:
            await asyncio.sleep(self.refresh_interval)
            try:
                self.evict_idle()
                await self.refresh_open_caches()
            except Exception as e:
                logger.error(f"[Credentials] Error in refresh loop: {e}", exc_info=True)


# Singleton instance
credential_registry = CredentialCacheRegistry()
