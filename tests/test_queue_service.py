"""Tests for the queue engine over in-memory repositories."""

import asyncio
from datetime import datetime, timedelta

import pytest

from api.services.errors import (
    AlreadyQueuedError,
    EmptyQueueError,
    EntryNotFoundError,
    QueueClosedError,
    StoreError,
)
from api.services.queue_service import FALLBACK_DISPLAY_NAME, QueueService
from shared.crypto import ContactCipher
from shared.repositories.queue import SettingsRowMissingError

from .conftest import FakeProfileRepository, RecordingDispatcher


def positions(entries):
    return [e.position for e in entries.active()]


class TestAdvance:
    async def test_serves_front_and_compacts(self, service, entries, settings_repo):
        """Three waiting, serving 5: front served, rest move up, counter 6."""
        settings_repo.row.current_serving = 5
        first = entries.seed("u1", 1)
        second = entries.seed("u2", 2)
        third = entries.seed("u3", 3)

        result = await service.advance()

        assert result.current_serving == 6
        assert result.served_entry_id == first.id
        assert entries.rows[first.id].is_active is False
        assert [(e.id, e.position, e.estimated_wait_time) for e in entries.active()] == [
            (second.id, 1, 20),
            (third.id, 2, 40),
        ]
        assert result.message == "Queue advanced"

    async def test_empty_queue_still_advances_counter(self, service, settings_repo):
        settings_repo.row.current_serving = 6

        result = await service.advance()

        assert result.current_serving == 7
        assert result.served_entry_id is None
        assert result.notification is None

    async def test_k_advances_from_zero(self, service, entries, settings_repo):
        entries.seed("u1", 1)
        entries.seed("u2", 2)

        for _ in range(5):
            await service.advance()

        assert settings_repo.row.current_serving == 5
        assert entries.active() == []

    async def test_notifies_served_customer_with_decrypted_contacts(
        self, service, entries, dispatcher, cipher
    ):
        entries.seed(
            "u1", 1, email=cipher.encrypt("ana@example.com"), phone=cipher.encrypt("09171234567")
        )

        await service.advance()

        assert len(dispatcher.sent) == 1
        payload = dispatcher.sent[0]
        assert payload.name == "Ana"
        assert payload.email == "ana@example.com"
        assert payload.phone == "09171234567"
        assert payload.position == 1

    async def test_notification_failure_does_not_undo_advance(
        self, make_service, entries, settings_repo
    ):
        svc = make_service(RecordingDispatcher(fail=True))
        served = entries.seed("u1", 1, email="ana@example.com", phone="09171234567")
        entries.seed("u2", 2)

        result = await svc.advance()

        assert entries.rows[served.id].is_active is False
        assert settings_repo.row.current_serving == 1
        assert positions(entries) == [1]
        assert result.notification_failed is True
        assert result.message == (
            "Queue advanced, but notification failed: SMS: gateway down; Email: 401 Unauthorized"
        )

    async def test_concurrent_advances_serve_front_once(
        self, service, entries, settings_repo, dispatcher
    ):
        first = entries.seed("u1", 1, phone="09170000001")
        entries.seed("u2", 2)
        entries.seed("u3", 3)

        results = await asyncio.gather(service.advance(), service.advance())

        served_ids = [r.served_entry_id for r in results if r.served_entry_id is not None]
        assert served_ids == [first.id]
        assert len(dispatcher.sent) == 1
        assert settings_repo.row.current_serving == 2
        assert positions(entries) == [1, 2]

    async def test_profile_failure_falls_back_to_default_name(
        self, entries, settings_repo, cipher
    ):
        dispatcher = RecordingDispatcher()
        svc = QueueService(
            None,
            dispatcher=dispatcher,
            cipher=cipher,
            entries=entries,
            settings=settings_repo,
            profiles=FakeProfileRepository(fail=True),
        )
        entries.seed("u1", 1, phone="09171234567")

        await svc.advance()

        assert dispatcher.sent[0].name == FALLBACK_DISPLAY_NAME

    async def test_store_failure_raises_store_error(self, service, entries, monkeypatch):
        async def broken():
            raise ConnectionRefusedError("connection refused")

        monkeypatch.setattr(entries, "get_front_entry", broken)

        with pytest.raises(StoreError) as exc_info:
            await service.advance()
        assert "connection refused" in str(exc_info.value)

    async def test_failed_counter_bump_leaves_front_unserved(
        self, service, entries, settings_repo, dispatcher
    ):
        first = entries.seed("u1", 1, phone="09171234567")
        entries.seed("u2", 2)
        settings_repo.fail = ConnectionResetError("connection reset")

        with pytest.raises(StoreError) as exc_info:
            await service.advance()

        assert str(exc_info.value) == f"Failed to serve entry {first.id}: connection reset"
        assert entries.rows[first.id].is_active is True
        assert positions(entries) == [1, 2]
        assert settings_repo.row.current_serving == 0
        assert dispatcher.sent == []


class TestNotifyNext:
    async def test_empty_queue_raises_without_mutation(self, service, entries, settings_repo):
        with pytest.raises(EmptyQueueError):
            await service.notify_next()

        assert settings_repo.row.current_serving == 0
        assert entries.renumber_calls == []

    async def test_notifies_front_without_moving_anyone(self, service, entries, dispatcher):
        entries.seed("u2", 1, email="bea@example.com")
        entries.seed("u3", 2)

        report = await service.notify_next()

        assert report.ok
        assert [p.name for p in dispatcher.sent] == ["Bea"]
        assert positions(entries) == [1, 2]


class TestReset:
    async def test_reset_clears_everything(self, service, entries, settings_repo):
        settings_repo.row.current_serving = 12
        for i in range(3):
            entries.seed(f"u{i}", i + 1)

        result = await service.reset()

        assert result.cleared_count == 3
        assert result.settings.current_serving == 0
        assert result.settings.last_reset is not None
        state = await service.get_state()
        assert state.entries == []
        assert state.current_serving == 0

        entry = await service.join("u9")
        assert entry.position == 1
        assert entry.estimated_wait_time == 20

    async def test_failed_counter_reset_keeps_entries(self, service, entries, settings_repo):
        settings_repo.row.current_serving = 4
        entries.seed("u1", 1)
        entries.seed("u2", 2)
        settings_repo.fail = ConnectionResetError("connection reset")

        with pytest.raises(StoreError) as exc_info:
            await service.reset()

        assert str(exc_info.value) == "Failed to reset queue: connection reset"
        assert positions(entries) == [1, 2]
        assert settings_repo.row.current_serving == 4
        assert entries.writes == settings_repo.writes == 0


class TestJoinLeaveRemove:
    async def test_join_appends_and_encrypts_contacts(self, service, entries, cipher):
        entries.seed("u1", 1)

        entry = await service.join("u2", email="bea@example.com", phone="09170000002")

        assert entry.position == 2
        assert entry.estimated_wait_time == 40
        assert entry.email == "bea@example.com"
        stored = entries.rows[entry.id]
        assert stored.email != "bea@example.com"
        assert cipher.decrypt(stored.email) == "bea@example.com"
        assert cipher.decrypt(stored.phone) == "09170000002"

    async def test_join_rejected_when_closed(self, service, settings_repo):
        settings_repo.row.is_active = False

        with pytest.raises(QueueClosedError):
            await service.join("u1")

    async def test_join_rejected_when_already_queued(self, service, entries):
        entries.seed("u1", 1)

        with pytest.raises(AlreadyQueuedError) as exc_info:
            await service.join("u1")
        assert exc_info.value.position == 1

    async def test_remove_renumbers_only_changed_rows(self, service, entries):
        first = entries.seed("u1", 1)
        entries.seed("u2", 2)
        entries.seed("u3", 3)

        remaining = await service.remove_entry(first.id)

        assert remaining == 2
        assert positions(entries) == [1, 2]
        assert len(entries.renumber_calls) == 1
        assert len(entries.renumber_calls[0]) == 2

    async def test_removing_last_entry_writes_nothing(self, service, entries):
        entries.seed("u1", 1)
        last = entries.seed("u2", 2)

        await service.remove_entry(last.id)

        assert entries.renumber_calls == []

    async def test_remove_missing_entry(self, service):
        with pytest.raises(EntryNotFoundError):
            await service.remove_entry(404)

    async def test_leave_withdraws_own_entry(self, service, entries):
        entries.seed("u1", 1)
        entries.seed("u2", 2)
        entries.seed("u3", 3)

        remaining = await service.leave("u2")

        assert remaining == 2
        assert [e.user_id for e in entries.active()] == ["u1", "u3"]
        assert positions(entries) == [1, 2]

    async def test_leave_when_not_queued(self, service):
        with pytest.raises(EntryNotFoundError):
            await service.leave("nobody")

    async def test_positions_stay_dense_through_mixed_operations(self, service, entries):
        for i in range(5):
            await service.join(f"c{i}")
        await service.advance()
        await service.leave("c3")
        await service.join("c9")
        await service.advance()

        active = entries.active()
        assert [e.position for e in active] == list(range(1, len(active) + 1))
        assert all(e.estimated_wait_time == e.position * 20 for e in active)


class TestReads:
    async def test_reads_never_write(self, service, entries, settings_repo, dispatcher):
        entries.seed("u1", 1, phone="09171234567")
        entries.seed("u2", 3)

        await service.get_state()
        await service.get_stats()
        await service.notify_next()

        assert entries.writes == 0
        assert settings_repo.writes == 0
        assert len(dispatcher.sent) == 1

    async def test_missing_settings_row_is_store_error(self, service, settings_repo, monkeypatch):
        async def missing():
            raise SettingsRowMissingError()

        monkeypatch.setattr(settings_repo, "get", missing)

        with pytest.raises(StoreError) as exc_info:
            await service.get_state()
        assert "queue_settings row 1 is missing" in str(exc_info.value)

    async def test_state_is_dense_and_decrypted_without_writing(
        self, service, entries, settings_repo, cipher
    ):
        settings_repo.row.current_serving = 3
        entries.seed("u1", 1, email=cipher.encrypt("ana@example.com"))
        entries.seed("u2", 3)
        entries.seed("u3", 4)

        state = await service.get_state()

        assert state.current_serving == 3
        assert [e.position for e in state.entries] == [1, 2, 3]
        assert [e.estimated_wait_time for e in state.entries] == [20, 40, 60]
        assert state.entries[0].email == "ana@example.com"
        assert positions(entries) == [1, 3, 4]
        assert entries.renumber_calls == []

    async def test_stats(self, service, entries):
        now = datetime(2026, 3, 14, 15, 0).astimezone()
        entries.seed("old", 1, created_at=now - timedelta(days=1))
        entries.rows[1].is_active = False
        a = entries.seed("u1", 1, created_at=now - timedelta(hours=2))
        b = entries.seed("u2", 2, created_at=now - timedelta(hours=1))
        a.estimated_wait_time = 10
        b.estimated_wait_time = 15

        stats = await service.get_stats(now=now)

        assert stats.total_today == 2
        assert stats.current_queue_length == 2
        # 12.5 rounds half up
        assert stats.average_wait_time == 13

    async def test_stats_on_empty_queue(self, service):
        stats = await service.get_stats()

        assert stats.average_wait_time == 0
        assert stats.current_queue_length == 0


class TestEncryptLegacyContacts:
    async def test_encrypts_only_plaintext_fields(self, service, entries, cipher):
        already = cipher.encrypt("done@example.com")
        legacy = entries.seed("u1", 1, email="legacy@example.com", phone="09171112222")
        entries.seed("u2", 2, email=already)
        entries.seed("u3", 3)

        result = await service.encrypt_legacy_contacts()

        assert result.updated_count == 1
        assert result.errors == []
        assert cipher.decrypt(entries.rows[legacy.id].email) == "legacy@example.com"
        assert cipher.decrypt(entries.rows[legacy.id].phone) == "09171112222"
        assert entries.rows[2].email == already

    async def test_requires_key(self, entries, settings_repo):
        svc = QueueService(
            None,
            dispatcher=RecordingDispatcher(),
            cipher=ContactCipher(""),
            entries=entries,
            settings=settings_repo,
            profiles=FakeProfileRepository(),
        )

        with pytest.raises(ValueError):
            await svc.encrypt_legacy_contacts()
