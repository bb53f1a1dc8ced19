"""
Unit Tests for the Access-Credential Cache

Covers:
1. Four-state population from slot pointers
2. Concurrent fan-out where one slow or failing slot does not block others
3. Single-slot refresh after a pointer change, including mid-refresh changes
4. Registry reuse, idle eviction and the refresh loop
"""
import asyncio
import pytest
from datetime import datetime, timedelta, timezone

from passport_portal.models import DocumentSlot
from passport_portal.services.credential_cache import (
    CredentialCache,
    CredentialCacheRegistry,
    CredentialState,
)

PUBLIC = "https://storage.test/storage/v1/object/public/passport-documents"


def pointer(path):
    return f"{PUBLIC}/{path}"


@pytest.mark.asyncio
class TestRefreshAll:
    """Test full population of a cache"""

    async def test_states_follow_pointers(self, object_store):
        """Test empty pointers are absent, signable ones ready, unsignable ones error"""
        object_store.unsignable.add("u1/photo_id_2.jpg")
        cache = CredentialCache(application_id="app-1", storage=object_store)

        await cache.refresh_all({
            DocumentSlot.BIRTH_CERTIFICATE: pointer("u1/birth_certificate_1.pdf"),
            DocumentSlot.PHOTO_ID: pointer("u1/photo_id_2.jpg"),
            DocumentSlot.SIGNATURE: "   ",
            DocumentSlot.CONSENT_FORM: None,
        })

        assert cache.get(DocumentSlot.BIRTH_CERTIFICATE).state == CredentialState.READY
        photo = cache.get(DocumentSlot.PHOTO_ID)
        assert photo.state == CredentialState.ERROR
        assert "simulated outage" in photo.error
        assert cache.get(DocumentSlot.SIGNATURE).state == CredentialState.ABSENT
        assert cache.get(DocumentSlot.CONSENT_FORM).state == CredentialState.ABSENT
        assert len(cache.snapshot()) == len(DocumentSlot)

    async def test_ready_expires_after_ttl(self, object_store):
        """Test a ready credential expires about one hour from now"""
        cache = CredentialCache(application_id="app-1", storage=object_store, ttl_seconds=3600)

        await cache.refresh_all({DocumentSlot.PASSPORT_PHOTO: pointer("u1/passport_photo_1.jpg")})

        credential = cache.get(DocumentSlot.PASSPORT_PHOTO)
        expected = datetime.now(timezone.utc) + timedelta(seconds=3600)
        assert abs((credential.expires_at - expected).total_seconds()) < 5
        assert "ttl=3600" in credential.url

    async def test_pointer_without_path_errors_without_signing(self, object_store):
        """Test a pointer outside the bucket becomes error with no gateway call"""
        cache = CredentialCache(application_id="app-1", storage=object_store)

        await cache.refresh_all({DocumentSlot.GUARDIAN_ID: "https://elsewhere.test/id.png"})

        assert cache.get(DocumentSlot.GUARDIAN_ID).state == CredentialState.ERROR
        assert object_store.calls_of("sign") == []

    async def test_two_refreshes_reference_same_object(self, object_store):
        """Test repeated refreshes of an unchanged pointer sign the same path"""
        cache = CredentialCache(application_id="app-1", storage=object_store)
        pointers = {DocumentSlot.OLD_PASSPORT: pointer("u1/old_passport_copy_5.pdf")}

        await cache.refresh_all(pointers)
        first = cache.get(DocumentSlot.OLD_PASSPORT).url
        await cache.refresh_all()
        second = cache.get(DocumentSlot.OLD_PASSPORT).url

        assert first != second
        assert first.split("?")[0] == second.split("?")[0]
        assert object_store.calls_of("sign") == ["u1/old_passport_copy_5.pdf"] * 2

    async def test_slow_slot_does_not_block_others(self, object_store):
        """Test results commit as they arrive"""
        release = asyncio.Event()
        original = object_store.issue_timed_access

        async def slow_for_birth_certificate(path, ttl_seconds=None):
            if "birth_certificate" in path:
                await release.wait()
            return await original(path, ttl_seconds)

        object_store.issue_timed_access = slow_for_birth_certificate
        cache = CredentialCache(application_id="app-1", storage=object_store)

        task = asyncio.create_task(cache.refresh_all({
            DocumentSlot.BIRTH_CERTIFICATE: pointer("u1/birth_certificate_1.pdf"),
            DocumentSlot.SIGNATURE: pointer("u1/signature_2.png"),
        }))
        for _ in range(50):
            await asyncio.sleep(0)

        assert cache.get(DocumentSlot.SIGNATURE).state == CredentialState.READY
        assert cache.get(DocumentSlot.BIRTH_CERTIFICATE).state == CredentialState.PENDING

        release.set()
        await task
        assert cache.get(DocumentSlot.BIRTH_CERTIFICATE).state == CredentialState.READY


@pytest.mark.asyncio
class TestRefreshSlot:
    """Test on-demand refresh of a single slot"""

    async def test_refresh_slot_after_upload(self, object_store):
        """Test a new pointer becomes ready without touching other slots"""
        cache = CredentialCache(application_id="app-1", storage=object_store)
        await cache.refresh_all({DocumentSlot.SIGNATURE: pointer("u1/signature_1.png")})
        signature_url = cache.get(DocumentSlot.SIGNATURE).url

        credential = await cache.refresh_slot(DocumentSlot.PHOTO_ID, pointer("u1/photo_id_9.jpg"))

        assert credential.state == CredentialState.READY
        assert cache.get(DocumentSlot.SIGNATURE).url == signature_url

    async def test_refresh_slot_after_delete(self, object_store):
        """Test a cleared pointer becomes absent"""
        cache = CredentialCache(application_id="app-1", storage=object_store)
        await cache.refresh_all({DocumentSlot.SIGNATURE: pointer("u1/signature_1.png")})

        credential = await cache.refresh_slot(DocumentSlot.SIGNATURE, "")

        assert credential.state == CredentialState.ABSENT
        assert cache.pointers[DocumentSlot.SIGNATURE] == ""


@pytest.mark.asyncio
class TestRefreshDuringPointerChange:
    """Test a scheduled refresh racing with a pointer change"""

    OLD = "u1/photo_id_1.png"
    NEW = "u1/photo_id_2.png"

    async def _cache_with_held_old_pointer(self, object_store):
        cache = CredentialCache(application_id="app-1", storage=object_store)
        await cache.refresh_all({DocumentSlot.PHOTO_ID: pointer(self.OLD)})

        release = asyncio.Event()
        original = object_store.issue_timed_access

        async def held_for_old_path(path, ttl_seconds=None):
            if path == self.OLD:
                await release.wait()
            return await original(path, ttl_seconds)

        object_store.issue_timed_access = held_for_old_path
        task = asyncio.create_task(cache.refresh_all())
        for _ in range(50):
            await asyncio.sleep(0)
        return cache, task, release

    async def test_ready_credential_stays_visible_while_resigning(self, object_store):
        cache, task, release = await self._cache_with_held_old_pointer(object_store)

        assert cache.get(DocumentSlot.PHOTO_ID).state == CredentialState.READY

        release.set()
        await task

    async def test_delete_is_not_overwritten_by_late_result(self, object_store):
        """Test a slot cleared mid-refresh stays absent"""
        cache, task, release = await self._cache_with_held_old_pointer(object_store)

        await cache.refresh_slot(DocumentSlot.PHOTO_ID, None)
        release.set()
        await task

        credential = cache.get(DocumentSlot.PHOTO_ID)
        assert credential.state == CredentialState.ABSENT
        assert credential.url is None

    async def test_replacement_is_not_overwritten_by_late_result(self, object_store):
        """Test a slot replaced mid-refresh keeps the new document's credential"""
        cache, task, release = await self._cache_with_held_old_pointer(object_store)

        replaced = await cache.refresh_slot(DocumentSlot.PHOTO_ID, pointer(self.NEW))
        release.set()
        await task

        credential = cache.get(DocumentSlot.PHOTO_ID)
        assert credential.state == CredentialState.READY
        assert credential.url == replaced.url
        assert self.NEW in credential.url


@pytest.mark.asyncio
class TestCredentialCacheRegistry:
    """Test the per-application registry"""

    async def test_open_reuses_cache_and_resigns_changed_slots(self, object_store):
        """Test a second open only signs slots whose pointer changed"""
        registry = CredentialCacheRegistry(storage=object_store)
        pointers = {
            DocumentSlot.SIGNATURE: pointer("u1/signature_1.png"),
            DocumentSlot.PHOTO_ID: pointer("u1/photo_id_1.jpg"),
        }
        first = await registry.open("app-1", pointers)

        pointers[DocumentSlot.PHOTO_ID] = pointer("u1/photo_id_2.jpg")
        second = await registry.open("app-1", pointers)

        assert first is second
        assert object_store.calls_of("sign").count("u1/signature_1.png") == 1
        assert object_store.calls_of("sign")[-1] == "u1/photo_id_2.jpg"

    async def test_evict_idle_drops_stale_caches(self, object_store):
        """Test caches idle past the limit are evicted"""
        registry = CredentialCacheRegistry(storage=object_store, idle_seconds=60)
        cache = await registry.open("app-1", {})
        await registry.open("app-2", {})
        cache.last_accessed -= 120

        assert registry.evict_idle() == 1
        assert registry.get("app-1") is None
        assert registry.get("app-2") is not None

    async def test_close_drops_cache(self, object_store):
        """Test navigating away removes the cache"""
        registry = CredentialCacheRegistry(storage=object_store)
        await registry.open("app-1", {})

        assert registry.close("app-1") is True
        assert len(registry) == 0

    async def test_refresh_loop_resigns_open_caches(self, object_store):
        """Test the loop re-signs every open application on its interval"""
        registry = CredentialCacheRegistry(storage=object_store, refresh_interval_seconds=0.01)
        await registry.open("app-1", {DocumentSlot.SIGNATURE: pointer("u1/signature_1.png")})

        await registry.start()
        await asyncio.sleep(0.05)
        await registry.stop()

        assert len(object_store.calls_of("sign")) >= 2
        assert registry.running is False
