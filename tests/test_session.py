from quaver.session import LoopMode, PlaybackSession, Snapshot

from conftest import make_track


def _session(*names):
    session = PlaybackSession(1)
    tracks = [make_track(n) for n in names]
    session.pending.extend(tracks)
    return session, tracks


class TestLoopMode:
    def test_next_cycles(self):
        """Should cycle OFF -> TRACK -> QUEUE -> OFF."""
        assert LoopMode.OFF.next() == LoopMode.TRACK
        assert LoopMode.TRACK.next() == LoopMode.QUEUE
        assert LoopMode.QUEUE.next() == LoopMode.OFF

    def test_labels(self):
        assert [m.label() for m in LoopMode] == ["Off", "Track", "Queue"]


class TestSelectNext:
    def test_off_pops_head(self):
        """Should pop the head and never put anything back."""
        session, (a, b) = _session("a", "b")
        assert session.select_next() is a
        session.current = a
        assert session.select_next() is b
        assert not session.pending

    def test_empty_returns_none(self):
        session, _ = _session()
        assert session.select_next() is None

    def test_track_loop_reuses_current(self):
        """Should return the current track unless forced."""
        session, (a, b) = _session("a", "b")
        session.current = make_track("c")
        session.loop_mode = LoopMode.TRACK
        assert session.select_next() is session.current
        assert list(session.pending) == [a, b]
        assert session.select_next(force=True) is a

    def test_track_loop_without_current_pops(self):
        session, (a,) = _session("a")
        session.loop_mode = LoopMode.TRACK
        assert session.select_next() is a

    def test_queue_loop_requeues_leaving_track(self):
        """Should append the outgoing track before popping the head."""
        session, (a, b) = _session("a", "b")
        session.loop_mode = LoopMode.QUEUE
        session.current = session.select_next()
        assert session.current is a
        assert session.select_next() is b
        assert list(session.pending) == [a]

    def test_queue_loop_single_track_repeats(self):
        session, (a,) = _session("a")
        session.loop_mode = LoopMode.QUEUE
        session.current = session.select_next()
        assert session.select_next() is a

    def test_discarded_track_is_not_requeued(self):
        session, (a, b) = _session("a", "b")
        session.loop_mode = LoopMode.QUEUE
        session.current = session.select_next()
        session.discard(a)
        assert session.select_next() is b
        assert not session.pending


class TestSnapshot:
    def test_empty(self):
        snap = Snapshot.empty(7)
        assert snap.guild_id == 7
        assert not snap.active
        assert snap.pending == ()

    def test_reflects_state(self):
        session, (a, b) = _session("a", "b")
        session.current = a
        session.playing = True
        session.mark_started()
        snap = session.snapshot()
        assert snap.active
        assert snap.current is a
        assert snap.pending == (a, b)
        assert snap.elapsed == 0
        assert snap.idle_deadline is None

    def test_elapsed_zero_when_not_playing(self):
        session, _ = _session()
        session.mark_started()
        assert session.elapsed() == 0

    def test_clear(self):
        session, (a, _) = _session("a", "b")
        session.current = a
        session.playing = True
        session.retry_count = 2
        session.clear()
        snap = session.snapshot()
        assert snap.pending == ()
        assert snap.current is None
        assert not snap.playing
        assert snap.retry_count == 0
