"""Tests for the store guard and the unit of work handed to pipeline stages."""
import threading
import time
from unittest.mock import MagicMock

import pytest

from objectanalyzer.database import StoreLock, UnitOfWork
from objectanalyzer.models.pending_import import PendingImport
from objectanalyzer.modules.staging import count_pending, stage_object


class TestStoreLock:
    def test_shared_holders_coexist(self):
        lock = StoreLock()
        with lock.shared():
            with lock.shared():
                assert lock.reader_count == 2
        assert lock.reader_count == 0

    def test_exclusive_released_on_error(self):
        lock = StoreLock()
        with pytest.raises(RuntimeError):
            with lock.exclusive():
                assert lock.held_exclusive
                raise RuntimeError("boom")
        assert not lock.held_exclusive

    def test_writer_waits_for_readers(self):
        lock = StoreLock()
        reader_in = threading.Event()
        release_reader = threading.Event()
        writer_done = threading.Event()

        def reader():
            with lock.shared():
                reader_in.set()
                release_reader.wait(5)

        def writer():
            with lock.exclusive():
                writer_done.set()

        t_reader = threading.Thread(target=reader)
        t_reader.start()
        assert reader_in.wait(5)
        t_writer = threading.Thread(target=writer)
        t_writer.start()

        assert not writer_done.wait(0.2)
        release_reader.set()
        assert writer_done.wait(5)
        t_reader.join(5)
        t_writer.join(5)

    def test_waiting_writer_blocks_new_readers(self):
        lock = StoreLock()
        release_first = threading.Event()
        first_in = threading.Event()
        second_in = threading.Event()

        def first_reader():
            with lock.shared():
                first_in.set()
                release_first.wait(5)

        def second_reader():
            with lock.shared():
                second_in.set()

        def writer():
            with lock.exclusive():
                pass

        threads = [threading.Thread(target=first_reader)]
        threads[0].start()
        assert first_in.wait(5)
        threads.append(threading.Thread(target=writer))
        threads[1].start()
        # Give the writer time to queue up behind the first reader
        for _ in range(50):
            if lock._writers_waiting:
                break
            time.sleep(0.01)
        threads.append(threading.Thread(target=second_reader))
        threads[2].start()

        assert not second_in.wait(0.2)
        release_first.set()
        assert second_in.wait(5)
        for t in threads:
            t.join(5)


class TestUnitOfWork:
    def test_commits_on_clean_exit(self, make_uow, db):
        with make_uow() as uow:
            stage_object(uow.session, {"object": "1.2.3.4", "object_type": "ipv4"})
        assert count_pending(db) == 1

    def test_rolls_back_on_error_and_releases_guard(self, make_uow, db, store_guard):
        with pytest.raises(RuntimeError):
            with make_uow() as uow:
                assert store_guard.held_exclusive
                stage_object(uow.session, {"object": "1.2.3.4", "object_type": "ipv4"})
                raise RuntimeError("stage blew up")
        assert count_pending(db) == 0
        assert not store_guard.held_exclusive

    def test_shared_unit_takes_read_guard(self, make_uow, store_guard):
        with make_uow(exclusive=False):
            assert store_guard.reader_count == 1
            assert not store_guard.held_exclusive
        assert store_guard.reader_count == 0

    def test_closes_only_sessions_it_opened(self, session_factory, store_guard):
        caller_session = session_factory()
        try:
            with UnitOfWork(caller_session, lock=store_guard) as uow:
                uow.session.add(PendingImport(object="1.2.3.4", object_type="ipv4"))
            # Still usable after the unit of work ends
            assert count_pending(caller_session) == 1
        finally:
            caller_session.close()

    def test_failed_commit_rolls_back_and_releases(self, store_guard):
        session = MagicMock()
        session.commit.side_effect = RuntimeError("commit failed")
        with pytest.raises(RuntimeError, match="commit failed"):
            with UnitOfWork(session, lock=store_guard):
                pass
        session.rollback.assert_called_once()
        assert not store_guard.held_exclusive

    def test_session_factory_failure_releases_guard(self, store_guard):
        def broken_factory():
            raise ConnectionError("store unavailable")

        with pytest.raises(ConnectionError):
            with UnitOfWork(lock=store_guard, session_factory=broken_factory):
                pass
        assert not store_guard.held_exclusive
