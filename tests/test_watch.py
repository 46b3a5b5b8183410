"""Tests for the polling watcher in digest_anki/watch.py."""

import os
import threading

from digest_anki.watch import DirectoryPoller


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def bump_mtime(path, offset_ns):
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + offset_ns))


class TestPollOnce:
    """Tests for debounced change detection."""

    def test_existing_file_reported_after_debounce(self, tmp_path):
        """Files present at startup are reported once stable."""
        (tmp_path / "a.txt").write_text("swoon")
        clock = FakeClock()
        poller = DirectoryPoller(tmp_path, "*.txt", debounce_ms=500, clock=clock)

        assert poller.poll_once() == []
        clock.advance(0.6)
        assert poller.poll_once() == [tmp_path / "a.txt"]
        clock.advance(0.6)
        assert poller.poll_once() == []

    def test_zero_debounce_reports_immediately(self, tmp_path):
        (tmp_path / "a.txt").write_text("swoon")
        poller = DirectoryPoller(tmp_path, "*.txt", debounce_ms=0, clock=FakeClock())
        assert poller.poll_once() == [tmp_path / "a.txt"]

    def test_pattern_filter(self, tmp_path):
        """Only matching files are reported."""
        (tmp_path / "a.txt").write_text("x")
        (tmp_path / "b.md").write_text("x")
        (tmp_path / "sub.txt").mkdir()
        poller = DirectoryPoller(tmp_path, "*.txt", debounce_ms=0, clock=FakeClock())
        assert poller.poll_once() == [tmp_path / "a.txt"]

    def test_change_reported_again(self, tmp_path):
        """A modified file is reported again after it settles."""
        path = tmp_path / "a.txt"
        path.write_text("swoon")
        clock = FakeClock()
        poller = DirectoryPoller(tmp_path, "*.txt", debounce_ms=0, clock=clock)
        assert poller.poll_once() == [path]

        path.write_text("swoon\n[Book.epub](b)\n")
        bump_mtime(path, 1_000_000_000)
        assert poller.poll_once() == [path]

    def test_still_changing_file_waits(self, tmp_path):
        """Each change restarts the debounce window."""
        path = tmp_path / "a.txt"
        path.write_text("one")
        clock = FakeClock()
        poller = DirectoryPoller(tmp_path, "*.txt", debounce_ms=500, clock=clock)

        assert poller.poll_once() == []
        clock.advance(0.4)
        path.write_text("one two")
        bump_mtime(path, 1_000_000_000)
        assert poller.poll_once() == []
        clock.advance(0.4)
        assert poller.poll_once() == []
        clock.advance(0.2)
        assert poller.poll_once() == [path]

    def test_removed_then_recreated(self, tmp_path):
        """A deleted file is forgotten and reported again when it returns."""
        path = tmp_path / "a.txt"
        path.write_text("swoon")
        poller = DirectoryPoller(tmp_path, "*.txt", debounce_ms=0, clock=FakeClock())
        assert poller.poll_once() == [path]
        path.unlink()
        assert poller.poll_once() == []
        path.write_text("swoon")
        assert poller.poll_once() == [path]


class TestWatch:
    def test_watch_calls_back_until_stopped(self, tmp_path):
        """watch invokes the callback for settled files and exits once stopped."""
        (tmp_path / "a.txt").write_text("swoon")
        poller = DirectoryPoller(tmp_path, "*.txt", interval_s=0.01, debounce_ms=0)
        stop = threading.Event()
        seen = []

        def callback(path):
            seen.append(path)
            stop.set()

        poller.watch(callback, stop)

        assert seen == [tmp_path / "a.txt"]
        assert stop.is_set()
