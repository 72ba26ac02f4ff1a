"""SQL-level tests for the queue repositories over a recording connection."""

import pytest

from shared.repositories.queue import (
    QueueEntryRepository,
    QueueSettingsRepository,
    SettingsRowMissingError,
)

SETTINGS_ROW = {
    "id": 1,
    "current_serving": 0,
    "is_active": True,
    "last_reset": None,
    "updated_at": None,
}


class RecordingConnection:
    """Logs statements and transaction boundaries; fails on a chosen statement."""

    def __init__(self, *, execute_result="UPDATE 0", row=None, value=None):
        self.execute_result = execute_result
        self.row = row
        self.value = value
        self.fail_on = None
        self.events = []

    def _run(self, sql):
        statement = " ".join(sql.split())
        if self.fail_on and self.fail_on in statement:
            raise ConnectionResetError("connection reset")
        self.events.append(statement)

    @property
    def statements(self):
        return [e for e in self.events if e not in ("BEGIN", "COMMIT", "ROLLBACK")]

    async def execute(self, sql, *args):
        self._run(sql)
        return self.execute_result

    async def fetchrow(self, sql, *args):
        self._run(sql)
        return self.row

    async def fetchval(self, sql, *args):
        self._run(sql)
        return self.value

    def transaction(self):
        return _Transaction(self)


class _Transaction:
    def __init__(self, connection):
        self.connection = connection

    async def __aenter__(self):
        self.connection.events.append("BEGIN")

    async def __aexit__(self, exc_type, exc, tb):
        self.connection.events.append("ROLLBACK" if exc_type else "COMMIT")
        return False


class _Acquire:
    def __init__(self, connection):
        self.connection = connection

    async def __aenter__(self):
        return self.connection

    async def __aexit__(self, *exc):
        return False


class FakePool:
    def __init__(self, connection):
        self.connection = connection

    def acquire(self):
        return _Acquire(self.connection)


class TestSettingsRead:
    async def test_get_is_a_plain_select(self):
        conn = RecordingConnection(row=dict(SETTINGS_ROW, current_serving=3))

        settings = await QueueSettingsRepository(FakePool(conn)).get()

        assert settings.current_serving == 3
        assert len(conn.events) == 1
        assert conn.events[0].startswith("SELECT")
        assert "INSERT" not in conn.events[0]
        assert "UPDATE" not in conn.events[0]

    async def test_get_without_seeded_row(self):
        conn = RecordingConnection(row=None)

        with pytest.raises(SettingsRowMissingError):
            await QueueSettingsRepository(FakePool(conn)).get()

        assert len(conn.statements) == 1


class TestResetQueue:
    async def test_clear_and_counter_reset_commit_together(self):
        conn = RecordingConnection(execute_result="UPDATE 3", row=SETTINGS_ROW)

        cleared, settings = await QueueEntryRepository(FakePool(conn)).reset_queue()

        assert cleared == 3
        assert settings.current_serving == 0
        assert conn.events[0] == "BEGIN"
        assert conn.events[-1] == "COMMIT"
        assert conn.statements[0].startswith("UPDATE queue_entries")
        assert conn.statements[1].startswith("UPDATE queue_settings")

    async def test_counter_reset_failure_rolls_back_clear(self):
        conn = RecordingConnection(execute_result="UPDATE 3", row=SETTINGS_ROW)
        conn.fail_on = "UPDATE queue_settings"

        with pytest.raises(ConnectionResetError):
            await QueueEntryRepository(FakePool(conn)).reset_queue()

        assert conn.events[0] == "BEGIN"
        assert conn.events[1].startswith("UPDATE queue_entries")
        assert conn.events[-1] == "ROLLBACK"
        assert "COMMIT" not in conn.events

    async def test_missing_settings_row_rolls_back_clear(self):
        conn = RecordingConnection(execute_result="UPDATE 2", row=None)

        with pytest.raises(SettingsRowMissingError):
            await QueueEntryRepository(FakePool(conn)).reset_queue()

        assert conn.events[-1] == "ROLLBACK"


class TestServeAndIncrement:
    async def test_serve_and_bump_commit_together(self):
        conn = RecordingConnection(execute_result="UPDATE 1", value=6)

        served, current = await QueueEntryRepository(FakePool(conn)).serve_and_increment(11)

        assert (served, current) == (True, 6)
        assert conn.events == ["BEGIN", *conn.statements, "COMMIT"]
        assert "position = 1" in conn.statements[0]
        assert "current_serving + 1" in conn.statements[1]

    async def test_lost_race_still_bumps_counter(self):
        conn = RecordingConnection(execute_result="UPDATE 0", value=7)

        served, current = await QueueEntryRepository(FakePool(conn)).serve_and_increment(11)

        assert (served, current) == (False, 7)
        assert conn.events[-1] == "COMMIT"

    async def test_counter_failure_rolls_back_serve(self):
        conn = RecordingConnection(execute_result="UPDATE 1", value=6)
        conn.fail_on = "current_serving + 1"

        with pytest.raises(ConnectionResetError):
            await QueueEntryRepository(FakePool(conn)).serve_and_increment(11)

        assert conn.events[1].startswith("UPDATE queue_entries")
        assert conn.events[-1] == "ROLLBACK"

    async def test_missing_settings_row_rolls_back_serve(self):
        conn = RecordingConnection(execute_result="UPDATE 1", value=None)

        with pytest.raises(SettingsRowMissingError):
            await QueueEntryRepository(FakePool(conn)).serve_and_increment(11)

        assert conn.events[-1] == "ROLLBACK"
