"""
Tests for the session transcript store.
"""

import threading
import time

import pytest

from dreamshell.core.session_log import (
    LogEntry,
    SessionLog,
    SessionRegistry,
    escape_message,
    unescape_message,
)
from dreamshell.lib.errors import IOFailure, UnknownSession

SID = "0b7c6a52-1a0e-4f7a-9d8e-3c2b1a0f9e8d"


@pytest.fixture
def log(tmp_path):
    return SessionLog(tmp_path / "sessions")


class StallingLock:
    """threading.Lock stand-in that delays one named thread before acquiring."""

    def __init__(self, stall_thread: str, seconds: float):
        self._lock = threading.Lock()
        self.stall_thread = stall_thread
        self.seconds = seconds

    def __enter__(self):
        if threading.current_thread().name == self.stall_thread:
            time.sleep(self.seconds)
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info):
        self._lock.release()


class TestEscaping:
    def test_escapes_all_five_characters(self):
        assert escape_message("""a & b < c > d " e ' f""") == (
            "a &amp; b &lt; c &gt; d &quot; e &apos; f"
        )

    def test_ampersand_escaped_once(self):
        assert escape_message("&lt;") == "&amp;lt;"
        assert unescape_message("&amp;lt;") == "&lt;"

    def test_entry_keeps_escaped_and_exposes_text(self):
        entry = LogEntry.create("<b>bold</b>")
        assert entry.message == "&lt;b&gt;bold&lt;/b&gt;"
        assert entry.text == "<b>bold</b>"

    def test_entry_xml_line(self):
        entry = LogEntry.create("hi")
        line = entry.to_xml()
        assert line.startswith('<message timestamp="')
        assert line.endswith(">hi</message>\n")


class TestAppend:
    def test_append_creates_slot_and_file(self, log):
        assert not log.exists(SID)
        log.append(SID, "Container started")

        assert log.exists(SID)
        assert log.path_for(SID).name == f"{SID}_stdio.xml"
        assert log.path_for(SID).exists()

    def test_n_appends_round_trip_in_order(self, log):
        messages = [
            "plain",
            "x < y && y > z",
            'say "hi"',
            "it's",
            "multi\nline",
            "</message><message>",
        ]
        for m in messages:
            log.append(SID, m)

        parsed = LogEntry.parse_many(log.path_for(SID).read_text(encoding="utf-8"))
        assert [e.text for e in parsed] == messages
        assert [e.message for e in parsed] == [escape_message(m) for m in messages]
        assert parsed == log.entries(SID)

    def test_timestamps_monotonic(self, log):
        for i in range(20):
            log.append(SID, f"line {i}")
        stamps = [e.timestamp for e in log.entries(SID)]
        assert stamps == sorted(stamps)

    def test_disk_failure_reports_io_failure_and_keeps_cache(self, log, tmp_path):
        # A directory where the transcript file should be makes open() fail
        log.path_for(SID).mkdir(parents=True)

        with pytest.raises(IOFailure):
            log.append(SID, "lost on disk")

        assert log.exists(SID)
        assert [e.text for e in log.entries(SID)] == ["lost on disk"]

    def test_concurrent_appends_keep_file_and_cache_identical(self, log):
        def worker(n):
            for i in range(25):
                log.append(SID, f"w{n}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        on_disk = LogEntry.parse_many(log.path_for(SID).read_text(encoding="utf-8"))
        assert len(on_disk) == 100
        assert on_disk == log.entries(SID)
        stamps = [e.timestamp for e in on_disk]
        assert stamps == sorted(stamps)

    def test_append_that_waits_for_the_lock_is_stamped_after_it(self, log):
        # The "slow" thread stalls before taking the lock while "fast" appends
        log._lock = StallingLock(stall_thread="slow", seconds=0.2)

        slow = threading.Thread(target=log.append, args=(SID, "slow"), name="slow")
        fast = threading.Thread(target=log.append, args=(SID, "fast"), name="fast")
        slow.start()
        time.sleep(0.05)
        fast.start()
        slow.join()
        fast.join()

        on_disk = LogEntry.parse_many(log.path_for(SID).read_text(encoding="utf-8"))
        assert [e.text for e in on_disk] == ["fast", "slow"]
        assert on_disk[0].timestamp < on_disk[1].timestamp


class TestLoad:
    def test_load_reads_existing_transcript(self, tmp_path):
        writer = SessionLog(tmp_path / "sessions")
        writer.append(SID, "one")
        writer.append(SID, "two & three")

        reader = SessionLog(tmp_path / "sessions")
        reader.load(SID)
        assert [e.text for e in reader.entries(SID)] == ["one", "two & three"]

    def test_load_missing_seeds_empty_entry(self, log):
        log.load(SID)
        assert log.exists(SID)
        assert log.entries(SID) == []

    def test_load_is_idempotent(self, log):
        log.append(SID, "one")
        log.load(SID)
        log.load(SID)
        assert len(log.entries(SID)) == 1

    def test_load_all_restores_registry(self, tmp_path):
        writer = SessionLog(tmp_path / "sessions")
        ids = [f"{SID[:-1]}{i}" for i in range(3)]
        for sid in ids:
            writer.append(sid, "Container started")
        (tmp_path / "sessions" / "notes.txt").write_text("ignored")

        reader = SessionLog(tmp_path / "sessions")
        assert reader.load_all() == 3
        assert sorted(SessionRegistry(reader).ids()) == sorted(ids)

    def test_load_all_creates_missing_directory(self, tmp_path):
        log = SessionLog(tmp_path / "does" / "not" / "exist")
        assert log.load_all() == 0
        assert (tmp_path / "does" / "not" / "exist").is_dir()


class TestRemove:
    def test_remove_evicts_cache_and_file(self, log):
        log.append(SID, "one")
        log.remove(SID)
        assert not log.exists(SID)
        assert not log.path_for(SID).exists()

    def test_failed_delete_keeps_session_registered(self, log):
        log.append(SID, "one")
        path = log.path_for(SID)
        path.unlink()
        path.mkdir()
        (path / "blocker").write_text("x")

        with pytest.raises(IOFailure):
            log.remove(SID)

        assert log.exists(SID)
        assert [e.text for e in log.entries(SID)] == ["one"]

    def test_remove_missing_is_not_an_error(self, log):
        log.remove(SID)
        log.remove(SID)
        assert not log.exists(SID)

    def test_entries_of_unknown_session(self, log):
        with pytest.raises(UnknownSession):
            log.entries(SID)


class RecordingListener:
    def __init__(self):
        self.entries = []
        self.closed = []

    def on_entry(self, session_id, entry):
        self.entries.append((session_id, entry.text))

    def on_close(self, session_id, notice):
        self.closed.append((session_id, notice))


class BrokenListener:
    def on_entry(self, session_id, entry):
        raise ConnectionError("peer gone")

    def on_close(self, session_id, notice):
        raise ConnectionError("peer gone")


class TestListeners:
    def test_subscribe_unknown_session_is_rejected(self, log):
        with pytest.raises(UnknownSession):
            log.subscribe(SID, RecordingListener())

    def test_appends_are_forwarded(self, log):
        log.append(SID, "before")
        listener = RecordingListener()
        log.subscribe(SID, listener)

        log.append(SID, "after")
        log.append("other-session", "not mine")

        assert listener.entries == [(SID, "after")]

    def test_close_sends_notice_and_deregisters(self, log):
        log.append(SID, "start")
        listener = RecordingListener()
        log.subscribe(SID, listener)

        log.close_listeners(SID, "Session terminated")
        log.append(SID, "late")

        assert listener.closed == [(SID, "Session terminated")]
        assert listener.entries == []

    def test_unsubscribe_leaves_session_intact(self, log):
        log.append(SID, "start")
        listener = RecordingListener()
        log.subscribe(SID, listener)

        log.unsubscribe(SID, listener)
        log.append(SID, "more")

        assert listener.entries == []
        assert [e.text for e in log.entries(SID)] == ["start", "more"]

    def test_failing_listener_is_dropped_and_append_succeeds(self, log):
        log.append(SID, "start")
        log.subscribe(SID, BrokenListener())

        entry = log.append(SID, "still written")
        log.append(SID, "again")

        assert entry.text == "still written"
        assert len(log.entries(SID)) == 3
        log.close_listeners(SID, "bye")  # nothing left to close


class TestRegistry:
    def test_registry_tracks_cache_keys(self, log):
        registry = SessionRegistry(log)
        assert len(registry) == 0
        assert SID not in registry

        log.append(SID, "Container started")
        assert SID in registry
        assert list(registry) == [SID]

        log.remove(SID)
        assert not registry.contains(SID)
