"""Tests for the journal-level edit workflow."""

import asyncio
import sqlite3
import threading
from contextlib import closing

import pytest

from daybook import db, logic
from daybook.errors import DuplicateDateError, IOFailureError, NotFoundError
from daybook.models import StoreContext


@pytest.fixture(params=["plain", "encrypted"])
def ctx(request, tmp_path):
    if request.param == "plain":
        return StoreContext(path=str(tmp_path / "journal.db"))
    return StoreContext(path=str(tmp_path / "journal.enc"), encrypted=True, password="pw")


def _open(ctx):
    return asyncio.run(logic.open_journal(ctx))


class TestStoreContext:
    def test_encrypted_needs_password(self, tmp_path):
        with pytest.raises(ValueError):
            StoreContext(path=str(tmp_path / "j.enc"), encrypted=True)


class TestSaveEntry:
    def test_new_store_opens_empty(self, ctx):
        assert _open(ctx).entries == []

    def test_edit_records_previous_content_once(self, ctx):
        async def scenario():
            journal = await logic.open_journal(ctx)
            entry = await logic.add_entry(ctx, journal, "2024-01-01", "A")
            created = entry.updated_at
            await logic.edit_entry(ctx, journal, entry.id, "B")
            await logic.edit_entry(ctx, journal, entry.id, "B")
            return created

        created = asyncio.run(scenario())
        stored = _open(ctx).entries[0]
        assert stored.content == "B"
        assert [(r.content, r.saved_at) for r in stored.history] == [("A", created)]

    def test_in_place_edit_keeps_previous_content(self, ctx):
        async def scenario():
            journal = await logic.open_journal(ctx)
            entry = await logic.add_entry(ctx, journal, "2024-01-01", "A")
            created = entry.updated_at
            found = journal.find(entry.id)
            found.content = "B"
            await logic.save_entry(ctx, journal, found)
            found.content = "C"
            await logic.save_entry(ctx, journal, found)
            return created

        created = asyncio.run(scenario())
        stored = _open(ctx).entries[0]
        assert stored.content == "C"
        assert [r.content for r in stored.history] == ["B", "A"]
        assert stored.history[-1].saved_at == created
        assert stored.updated_at > stored.history[0].saved_at > created

    def test_in_place_save_without_change_adds_nothing(self, ctx):
        async def scenario():
            journal = await logic.open_journal(ctx)
            entry = await logic.add_entry(ctx, journal, "2024-01-01", "A")
            await logic.save_entry(ctx, journal, entry)

        asyncio.run(scenario())
        assert _open(ctx).entries[0].history == []

    def test_duplicate_date_is_rejected(self, ctx):
        async def scenario():
            journal = await logic.open_journal(ctx)
            await logic.add_entry(ctx, journal, "2024-01-01", "first")
            try:
                await logic.add_entry(ctx, journal, "2024-01-01", "second")
            finally:
                assert [e.content for e in journal.entries] == ["first"]

        with pytest.raises(DuplicateDateError):
            asyncio.run(scenario())
        assert [e.content for e in _open(ctx).entries] == ["first"]

    def test_moving_entry_onto_taken_date(self, ctx):
        async def scenario():
            journal = await logic.open_journal(ctx)
            await logic.add_entry(ctx, journal, "2024-01-01", "one")
            two = await logic.add_entry(ctx, journal, "2024-01-02", "two")
            await logic.edit_entry(ctx, journal, two.id, "two", entry_date="2024-01-01")

        with pytest.raises(DuplicateDateError):
            asyncio.run(scenario())

    @pytest.mark.parametrize("bad", ["2024-1-1", "01/02/2024", "2024-02-30", ""])
    def test_invalid_date(self, ctx, bad):
        journal = _open(ctx)
        with pytest.raises(ValueError):
            asyncio.run(logic.add_entry(ctx, journal, bad, "x"))

    def test_entries_kept_newest_first(self, ctx):
        async def scenario():
            journal = await logic.open_journal(ctx)
            for d in ("2024-01-02", "2024-01-05", "2024-01-01"):
                await logic.add_entry(ctx, journal, d, d)
            return journal

        journal = asyncio.run(scenario())
        assert [e.date for e in journal.entries] == ["2024-01-05", "2024-01-02", "2024-01-01"]
        assert [e.date for e in _open(ctx).entries] == ["2024-01-05", "2024-01-02", "2024-01-01"]

    def test_storage_failure_restores_collection(self, tmp_path, monkeypatch):
        ctx = StoreContext(path=str(tmp_path / "journal.db"))

        async def broken(*args, **kwargs):
            raise IOFailureError("read-only filesystem")

        monkeypatch.setattr(db, "save_entry", broken)
        journal = _open(ctx)
        with pytest.raises(IOFailureError):
            asyncio.run(logic.add_entry(ctx, journal, "2024-01-01", "x"))
        assert journal.entries == []


class TestDeleteEntry:
    def test_removes_entry_and_owned_rows(self, ctx, photo):
        from daybook import attachments

        async def scenario():
            journal = await logic.open_journal(ctx)
            keep = await logic.add_entry(ctx, journal, "2024-01-02", "keep")
            gone = await logic.add_entry(ctx, journal, "2024-01-01", "v1")
            await logic.edit_entry(ctx, journal, gone.id, "v2")
            await attachments.add_attachment(ctx, journal.find(gone.id), photo)
            await logic.delete_entry(ctx, journal, gone.id)
            return journal, keep

        journal, keep = asyncio.run(scenario())
        assert [e.id for e in journal.entries] == [keep.id]
        assert [e.id for e in _open(ctx).entries] == [keep.id]
        if not ctx.encrypted:
            with closing(sqlite3.connect(ctx.path)) as conn:
                assert conn.execute("SELECT COUNT(*) FROM history").fetchone()[0] == 0
                assert conn.execute("SELECT COUNT(*) FROM attachments").fetchone()[0] == 0

    def test_unknown_id(self, ctx):
        journal = _open(ctx)
        with pytest.raises(NotFoundError):
            asyncio.run(logic.delete_entry(ctx, journal, "ghost"))


class TestEntryVersions:
    def test_current_then_history(self, ctx):
        async def scenario():
            journal = await logic.open_journal(ctx)
            entry = await logic.add_entry(ctx, journal, "2024-01-01", "A")
            await logic.edit_entry(ctx, journal, entry.id, "B")
            return await logic.edit_entry(ctx, journal, entry.id, "C")

        entry = asyncio.run(scenario())
        assert [v.content for v in logic.entry_versions(entry)] == ["C", "B", "A"]


class TestConcurrentCalls:
    def test_gathered_opens_do_not_deadlock(self, ctx):
        async def seed():
            journal = await logic.open_journal(ctx)
            await logic.add_entry(ctx, journal, "2024-01-01", "A")

        asyncio.run(seed())
        results = []

        async def both():
            return await asyncio.gather(logic.open_journal(ctx), logic.open_journal(ctx))

        def run():
            results.extend(asyncio.run(both()))

        worker = threading.Thread(target=run, daemon=True)
        worker.start()
        worker.join(timeout=10)
        assert not worker.is_alive()
        assert [[e.content for e in j.entries] for j in results] == [["A"], ["A"]]
