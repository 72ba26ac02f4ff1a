"""Shared test fixtures: in-memory repositories and a recording dispatcher."""

import asyncio
from dataclasses import replace
from datetime import datetime

import pytest

from api.services.notifications import DispatchReport
from api.services.queue_service import QueueService
from api.services.sms_client import DispatchResult
from shared.crypto import ContactCipher
from shared.models.queue import QueueEntry, QueueSettings

TEST_KEY = "test-passphrase"


class _WriteTracking:
    """Counts committed writes and, like the row-level change triggers,
    signals ``on_write(table)`` only when a row actually changed."""

    table = ""

    def __init__(self):
        self.writes = 0
        self.on_write = None

    async def _wrote(self):
        self.writes += 1
        if self.on_write is not None:
            await self.on_write(self.table)


class FakeSettingsRepository(_WriteTracking):
    table = "queue_settings"

    def __init__(self, current_serving=0, is_active=True):
        super().__init__()
        self.row = QueueSettings(id=1, current_serving=current_serving, is_active=is_active)
        self.fail = None

    def _check(self):
        if self.fail is not None:
            raise self.fail

    async def get(self):
        await asyncio.sleep(0)
        return replace(self.row)

    async def increment_serving(self):
        await asyncio.sleep(0)
        self._check()
        self.row.current_serving += 1
        await self._wrote()
        return self.row.current_serving

    async def zero_counter(self):
        """Settings half of ``FakeEntryRepository.reset_queue``."""
        await asyncio.sleep(0)
        self._check()
        self.row.current_serving = 0
        self.row.last_reset = datetime.now().astimezone()
        await self._wrote()
        return replace(self.row)

    async def set_open(self, is_active):
        await asyncio.sleep(0)
        self._check()
        if self.row.is_active != is_active:
            self.row.is_active = is_active
            await self._wrote()
        return replace(self.row)


class FakeEntryRepository(_WriteTracking):
    """In-memory queue_entries with the same conditional-write semantics.

    Every method yields to the event loop once, so concurrent service calls
    interleave the way they would against a real database. Multi-table
    writes undo their entry changes when the settings write fails, the way
    the repository's transactions roll back.
    """

    table = "queue_entries"

    def __init__(self, settings=None):
        super().__init__()
        self.settings = settings or FakeSettingsRepository()
        self.rows: dict[int, QueueEntry] = {}
        self._next_id = 1
        self.renumber_calls: list[list[tuple[int, int, int]]] = []

    def seed(self, user_id, position, *, email=None, phone=None, qr_code=None, created_at=None):
        entry = QueueEntry(
            id=self._next_id,
            user_id=user_id,
            position=position,
            estimated_wait_time=position * 20,
            email=email,
            phone=phone,
            qr_code=qr_code,
            created_at=created_at or datetime.now().astimezone(),
        )
        self.rows[entry.id] = entry
        self._next_id += 1
        return entry

    def active(self) -> list[QueueEntry]:
        return sorted(
            (e for e in self.rows.values() if e.is_active), key=lambda e: (e.position, e.id)
        )

    async def get_active_entries(self):
        await asyncio.sleep(0)
        return [replace(e) for e in self.active()]

    async def get_front_entry(self):
        await asyncio.sleep(0)
        front = [e for e in self.active() if e.position == 1]
        return replace(front[0]) if front else None

    async def find_active_by_user(self, user_id):
        await asyncio.sleep(0)
        for entry in self.active():
            if entry.user_id == user_id:
                return replace(entry)
        return None

    async def add_entry(self, user_id, *, email=None, phone=None, qr_code=None, wait_per_slot=20):
        await asyncio.sleep(0)
        position = max((e.position for e in self.active()), default=0) + 1
        entry = self.seed(user_id, position, email=email, phone=phone, qr_code=qr_code)
        entry.estimated_wait_time = position * wait_per_slot
        await self._wrote()
        return replace(entry)

    async def serve_and_increment(self, entry_id):
        await asyncio.sleep(0)
        entry = self.rows.get(entry_id)
        served = entry is not None and entry.is_active and entry.position == 1
        if served:
            entry.is_active = False
        try:
            current = await self.settings.increment_serving()
        except Exception:
            if served:
                entry.is_active = True
            raise
        if served:
            await self._wrote()
        return served, current

    async def deactivate_entry(self, entry_id):
        await asyncio.sleep(0)
        entry = self.rows.get(entry_id)
        if entry is None or not entry.is_active:
            return False
        entry.is_active = False
        await self._wrote()
        return True

    async def renumber(self, updates):
        await asyncio.sleep(0)
        self.renumber_calls.append(list(updates))
        count = 0
        for entry_id, position, wait in updates:
            entry = self.rows.get(entry_id)
            if entry is not None and entry.is_active:
                entry.position = position
                entry.estimated_wait_time = wait
                count += 1
        if count:
            await self._wrote()
        return count

    async def reset_queue(self):
        await asyncio.sleep(0)
        cleared = self.active()
        for entry in cleared:
            entry.is_active = False
        try:
            settings = await self.settings.zero_counter()
        except Exception:
            for entry in cleared:
                entry.is_active = True
            raise
        if cleared:
            await self._wrote()
        return len(cleared), settings

    async def count_created_between(self, start, end):
        await asyncio.sleep(0)
        return sum(1 for e in self.rows.values() if start <= e.created_at < end)

    async def list_contacts(self):
        await asyncio.sleep(0)
        return [(e.id, e.email, e.phone) for e in sorted(self.rows.values(), key=lambda e: e.id)]

    async def update_contacts(self, entry_id, *, email=None, phone=None):
        await asyncio.sleep(0)
        entry = self.rows[entry_id]
        entry.email = email if email is not None else entry.email
        entry.phone = phone if phone is not None else entry.phone
        await self._wrote()
        return True


class FakeProfileRepository:
    def __init__(self, names=None, fail=False):
        self.names = names or {}
        self.fail = fail

    async def get_display_name(self, user_id):
        if self.fail:
            raise ConnectionResetError("profiles unavailable")
        return self.names.get(user_id)


class RecordingDispatcher:
    """Stands in for NotificationDispatcher; records every now-serving payload."""

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def notify_now_serving(self, payload):
        self.sent.append(payload)
        report = DispatchReport()
        if payload.phone:
            report.results["SMS"] = DispatchResult(
                success=not self.fail, error="gateway down" if self.fail else None
            )
        if payload.email:
            report.results["Email"] = DispatchResult(
                success=not self.fail, error="401 Unauthorized" if self.fail else None
            )
        return report

    async def close(self):
        pass


@pytest.fixture
def settings_repo():
    return FakeSettingsRepository()


@pytest.fixture
def entries(settings_repo):
    return FakeEntryRepository(settings_repo)


@pytest.fixture
def profiles():
    return FakeProfileRepository({"u1": "Ana", "u2": "Bea", "u3": "Cris"})


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def cipher():
    return ContactCipher(TEST_KEY)


@pytest.fixture
def make_service(entries, settings_repo, profiles, cipher):
    """Build a QueueService over the fakes with a chosen dispatcher."""

    def _make(dispatcher):
        return QueueService(
            None,
            dispatcher=dispatcher,
            cipher=cipher,
            entries=entries,
            settings=settings_repo,
            profiles=profiles,
        )

    return _make


@pytest.fixture
def service(make_service, dispatcher):
    return make_service(dispatcher)
