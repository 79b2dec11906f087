"""Unit tests for the shared status table."""

import threading

import pytest

from ham_status import (
    Band,
    RunState,
    StatusTable,
    clamp_score,
    classify_band,
    render_bar,
)

BAND_ORDER = [Band.BLOCKED, Band.LIMITED, Band.GOOD]


class TestClassifyBand:
    @pytest.mark.parametrize("score", [0, 1, 2, 3])
    def test_blocked(self, score: int) -> None:
        assert classify_band(score) is Band.BLOCKED

    @pytest.mark.parametrize("score", [4, 5, 6])
    def test_limited(self, score: int) -> None:
        assert classify_band(score) is Band.LIMITED

    @pytest.mark.parametrize("score", [7, 8, 9, 10])
    def test_good(self, score: int) -> None:
        assert classify_band(score) is Band.GOOD

    @pytest.mark.parametrize("score", [-1, 11, 255, -100])
    def test_out_of_range_is_unknown(self, score: int) -> None:
        assert classify_band(score) is Band.UNKNOWN

    def test_monotonic(self) -> None:
        tiers = [BAND_ORDER.index(classify_band(s)) for s in range(11)]
        assert tiers == sorted(tiers)

    def test_labels(self) -> None:
        assert Band.BLOCKED.label == "Blocked/Failed"
        assert Band.LIMITED.label == "Limited"
        assert Band.GOOD.label == "Good"


class TestHelpers:
    def test_clamp(self) -> None:
        assert clamp_score(-3) == 0
        assert clamp_score(14) == 10
        assert clamp_score(7) == 7

    def test_bar_segments(self) -> None:
        bar = render_bar(3)
        assert len(bar) == 10
        assert bar == "███░░░░░░░"

    def test_bar_out_of_range_is_clamped(self) -> None:
        assert render_bar(12) == "█" * 10
        assert render_bar(-1) == "░" * 10


class TestStatusTable:
    def test_initialize_rows_in_order(self) -> None:
        table = StatusTable()
        table.initialize(["A", "B"], ["first", "second"])
        rows = table.snapshot()
        assert [r.name for r in rows] == ["A", "B"]
        assert [r.score for r in rows] == [0, 0]
        assert all(r.band is Band.PENDING for r in rows)

    def test_duplicate_names_rejected(self) -> None:
        with pytest.raises(ValueError):
            StatusTable().initialize(["A", "A"])

    def test_update_sets_score_and_detail(self) -> None:
        table = StatusTable.from_names(["A", "B"], ["a", "b"])
        assert table.update("A", 10, "HTTP connectivity")
        a, b = table.snapshot()
        assert (a.score, a.detail, a.band) == (10, "HTTP connectivity", Band.GOOD)
        assert (b.score, b.band) == (0, Band.PENDING)

    def test_update_is_idempotent(self) -> None:
        table = StatusTable.from_names(["A"])
        table.update("A", 5, "x")
        once = table.snapshot()[0]
        table.update("A", 5, "x")
        twice = table.snapshot()[0]
        assert (once.name, once.score, once.detail, once.band) == (twice.name, twice.score, twice.detail, twice.band)

    def test_unknown_name_is_ignored(self) -> None:
        table = StatusTable.from_names(["A", "B"])
        before = table.snapshot()
        assert table.update("Z", 10, "nope") is False
        assert table.snapshot() == before
        assert len(table) == 2

    def test_snapshot_is_a_copy(self) -> None:
        table = StatusTable.from_names(["A"])
        rows = table.snapshot()
        rows.clear()
        assert len(table.snapshot()) == 1

    def test_writes_after_close_are_noops(self) -> None:
        table = StatusTable.from_names(["A"])
        table.close()
        assert table.update("A", 10, "late") is False
        table.mark_cycle()
        assert table.snapshot()[0].score == 0
        assert table.cycles == 0

    def test_concurrent_reads_never_see_torn_rows(self) -> None:
        table = StatusTable.from_names(["A"])
        stop = threading.Event()

        def writer() -> None:
            i = 0
            while not stop.is_set():
                score = i % 11
                table.update("A", score, f"detail-{score}")
                i += 1

        t = threading.Thread(target=writer)
        t.start()
        try:
            for _ in range(5000):
                row = table.snapshot()[0]
                if not row.pending:
                    assert row.detail == f"detail-{row.score}"
        finally:
            stop.set()
            t.join()


class TestRunState:
    def test_one_way(self) -> None:
        state = RunState()
        assert state.running
        state.stop()
        assert not state.running
        state.stop()
        assert not state.running

    def test_stop_from_another_thread_is_seen(self) -> None:
        state = RunState()
        t = threading.Thread(target=state.stop)
        t.start()
        t.join()
        assert not state.running
