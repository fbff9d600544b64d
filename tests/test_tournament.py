"""
Tests for standings and the tournament runner, played with fake engines.
"""

import json

import pytest

from takbench.engine_manager import EngineConfig
from takbench.match import MatchResult
from takbench.ptn_writer import PtnWriter
from takbench.results import Color, Draw, Reason, Win
from takbench.schedule import ScheduleEntry, TimeControl, TournamentFormat, build_schedule
from takbench.tournament import Standings, Tournament, TournamentStats

TC = TimeControl(20000, 0)


def round_robin(num_engines, num_games=None):
    return build_schedule(num_engines, [], TournamentFormat.ROUND_ROBIN, 5, 0.0, TC,
                          num_games=num_games)


def stats_by_name(tournament):
    return {row["engine"]: row for row in tournament.get_standings()}


class TestTournamentStats:
    def test_add_results(self):
        stats = TournamentStats("alpha")
        stats.add_result(1.0, Color.WHITE)
        stats.add_result(0.5, Color.BLACK)
        stats.add_result(0.0, Color.BLACK, faulted=True)
        data = stats.to_dict()
        assert data["games"] == 3
        assert data["wins"] == 1
        assert data["draws"] == 1
        assert data["losses"] == 1
        assert data["points"] == 1.5
        assert data["wins_white"] == 1
        assert data["faults"] == 1
        assert data["score_percentage"] == pytest.approx(50.0)

    def test_no_games(self):
        assert TournamentStats("alpha").to_dict()["score_percentage"] == 0


class TestStandings:
    """Tests for the shared score table."""

    def test_record_win(self):
        standings = Standings(["alpha", "beta"])
        standings.record(ScheduleEntry(0, 0, 1, None, 5, 0.0, TC), Win(Color.BLACK, Reason.ROAD))
        rows = standings.get_standings()
        assert rows[0]["engine"] == "beta"
        assert rows[0]["points"] == 1.0
        assert rows[1]["points"] == 0.0
        assert standings.pairs[(1, 0)].wins == 1
        assert standings.pairs[(0, 1)].losses == 1

    def test_record_draw(self):
        standings = Standings(["alpha", "beta"])
        standings.record(ScheduleEntry(0, 1, 0, None, 5, 0.0, TC), Draw(Reason.REPETITION))
        assert [row["points"] for row in standings.get_standings()] == [0.5, 0.5]
        assert standings.pairs[(0, 1)].draws == 1

    def test_self_play_has_no_pair(self):
        """A book-test game against itself counts for both colours but no pairing."""
        standings = Standings(["alpha"])
        standings.record(ScheduleEntry(0, 0, 0, None, 5, 0.0, TC), Win(Color.WHITE, Reason.FLATS))
        row = standings.get_standings()[0]
        assert row["games"] == 2
        assert row["points"] == 1.0
        assert standings.pairs == {}

    def test_faults_counted(self):
        standings = Standings(["alpha", "beta"])
        standings.record(ScheduleEntry(0, 0, 1, None, 5, 0.0, TC),
                         Win(Color.WHITE, Reason.TIMEOUT), {Color.BLACK})
        faults = {row["engine"]: row["faults"] for row in standings.get_standings()}
        assert faults == {"alpha": 0, "beta": 1}

    def test_pair_summaries(self):
        standings = Standings(["alpha", "beta"])
        entry = ScheduleEntry(0, 0, 1, None, 5, 0.0, TC)
        standings.record(entry, Win(Color.WHITE, Reason.ROAD))
        standings.record(entry, Draw(Reason.FLATS))
        summaries = standings.pair_summaries()
        assert len(summaries) == 1
        summary = summaries[0]
        assert summary["engine"] == "alpha"
        assert summary["opponent"] == "beta"
        assert summary["games"] == 2
        assert summary["wins"] == 1
        assert summary["draws"] == 1
        assert summary["elo"].startswith("+")


class TestTournamentRun:
    """Full runs against fake engine processes."""

    def test_round_robin(self, make_engine, sink):
        """Each engine wins its White game on flats."""
        engines = [make_engine(name="alpha"), make_engine(name="beta")]
        tournament = Tournament("rr", engines, round_robin(2), sink=sink)
        results = tournament.run()
        assert results["games_played"] == 2
        assert results["games_total"] == 2
        assert not results["stopped"]
        stats = stats_by_name(tournament)
        assert stats["alpha"]["points"] == 1.0
        assert stats["beta"]["points"] == 1.0
        assert stats["alpha"]["wins_white"] == 1
        assert [g["result"] for g in results["games"]] == ["F-0", "F-0"]
        assert [g["round"] for g in results["games"]] == [1, 2]
        # One process per engine, reused for the second game
        assert tournament.pool.spawned == 2

    def test_illegal_move_does_not_stop_runner(self, make_engine, sink):
        """Illegal moves lose the game and the tournament carries on."""
        engines = [make_engine("illegal", name="bad"), make_engine(name="good")]
        tournament = Tournament("illegal", engines, round_robin(2), sink=sink)
        results = tournament.run()
        assert results["games_played"] == 2
        assert all(g["reason"].endswith("by illegal move") for g in results["games"])
        stats = stats_by_name(tournament)
        assert stats["good"]["points"] == 2.0
        assert stats["bad"]["faults"] == 2

    def test_unstartable_engine_forfeits(self, make_engine, sink):
        """An engine that cannot be spawned loses every game it is scheduled in."""
        broken = make_engine(name="ghost")
        broken.path = "/nonexistent/takbench-engine"
        engines = [make_engine(name="alpha"), make_engine(name="beta"), broken]
        tournament = Tournament("spawn", engines, round_robin(3), sink=sink)
        results = tournament.run()
        assert results["games_played"] == 6
        assert tournament.broken == {2}
        stats = stats_by_name(tournament)
        assert stats["ghost"]["losses"] == 4
        assert stats["ghost"]["faults"] == 4
        assert stats["alpha"]["points"] + stats["beta"]["points"] == 6.0
        forfeits = [g for g in results["games"] if "forfeit" in g["reason"]]
        assert len(forfeits) == 4

    def test_both_engines_broken_draw(self, make_engine, sink):
        """Once both sides are known to be broken their game is a forfeit draw."""
        first = make_engine(name="ghost1")
        first.path = "/nonexistent/one"
        second = make_engine(name="ghost2")
        second.path = "/nonexistent/two"
        engines = [first, second, make_engine(name="alpha")]
        # The seventh game wraps around to ghost1 vs ghost2
        tournament = Tournament("ghosts", engines, round_robin(3, num_games=7), sink=sink)
        results = tournament.run()
        assert results["games_played"] == 7
        assert tournament.broken == {0, 1}
        assert results["games"][-1]["result"] == "1/2-1/2"
        assert stats_by_name(tournament)["alpha"]["points"] == 4.0

    def test_handshake_failure_forfeits_single_game(self, make_engine, sink):
        """Handshake timeouts cost the game but the engine is tried again."""
        engines = [make_engine("nohandshake", name="mute"), make_engine(name="alpha")]
        tournament = Tournament("mute", engines, round_robin(2), startup_timeout=0.5, sink=sink)
        results = tournament.run()
        assert results["games_played"] == 2
        assert tournament.broken == set()
        assert all(g["reason"].endswith("by forfeit") for g in results["games"])
        assert stats_by_name(tournament)["alpha"]["points"] == 2.0

    def test_crashed_sessions_are_replaced(self, make_engine, sink):
        """A crashed engine is respawned for its next game."""
        engines = [make_engine("crash", name="crashy"), make_engine(name="alpha")]
        tournament = Tournament("crash", engines, round_robin(2), sink=sink)
        results = tournament.run()
        assert [g["reason"] for g in results["games"]] == [
            "Black wins by crash", "White wins by crash",
        ]
        assert tournament.pool.spawned == 3

    def test_concurrent_games(self, make_engine, sink):
        """Games on several workers are all recorded once."""
        engines = [make_engine(name=n) for n in ("alpha", "beta", "gamma")]
        tournament = Tournament("parallel", engines, round_robin(3), concurrency=3, sink=sink)
        results = tournament.run()
        assert results["games_played"] == 6
        assert sum(row["points"] for row in results["standings"]) == 6.0
        assert sorted(g["round"] for g in results["games"]) == [1, 2, 3, 4, 5, 6]
        assert tournament.live_games() == []

    def test_per_engine_time_control(self, make_engine, sink):
        """An engine's own time control overrides the schedule's."""
        engines = [make_engine(name="alpha", time_control="30+1"), make_engine(name="beta")]
        tournament = Tournament("tc", engines, round_robin(2, num_games=1), sink=sink)
        results = tournament.run()
        assert results["games"][0]["time_white"] > 30000

    def test_update_callback(self, make_engine, sink):
        """The callback sees every finished game with the current standings."""
        seen = []
        engines = [make_engine(name="alpha"), make_engine(name="beta")]
        tournament = Tournament("cb", engines, round_robin(2), sink=sink)
        tournament.run(lambda game, standings: seen.append((game["round"], len(standings))))
        assert sorted(seen) == [(1, 2), (2, 2)]

    def test_stop_before_start(self, make_engine, sink):
        """A stop requested up front plays nothing and spawns nothing."""
        engines = [make_engine(name="alpha"), make_engine(name="beta")]
        tournament = Tournament("stopped", engines, round_robin(2), sink=sink)
        tournament.request_stop()
        results = tournament.run()
        assert results["games_played"] == 0
        assert results["stopped"]
        assert tournament.pool.spawned == 0

    def test_stop_during_run(self, make_engine, sink):
        """A stop request lets the current game finish and skips the rest."""
        engines = [make_engine(name="alpha"), make_engine(name="beta")]
        tournament = Tournament("stopping", engines, round_robin(2, num_games=4), sink=sink)
        results = tournament.run(lambda game, standings: tournament.request_stop())
        assert results["games_played"] == 1
        assert results["stopped"]

    def test_invalid_concurrency(self, make_engine):
        """At least one worker is required."""
        with pytest.raises(ValueError):
            Tournament("bad", [make_engine()], round_robin(2), concurrency=0)


class TestOutput:
    """Tests for PTN and JSON output."""

    def test_ptn_file(self, make_engine, sink, tmp_path):
        engines = [make_engine(name="alpha"), make_engine(name="beta")]
        ptn_path = tmp_path / "games.ptn"
        writer = PtnWriter(str(ptn_path), event="rr test")
        tournament = Tournament("rr", engines, round_robin(2), concurrency=2,
                                ptn_writer=writer, sink=sink)
        tournament.run()
        text = ptn_path.read_text()
        assert text.count('[Event "rr test"]') == 2
        assert text.index('[Round "1"]') < text.index('[Round "2"]')
        assert '[Player1 "alpha"]' in text

    def test_save_results(self, make_engine, sink, tmp_path):
        engines = [make_engine(name="alpha"), make_engine(name="beta")]
        tournament = Tournament("save", engines, round_robin(2, num_games=1), sink=sink)
        tournament.run()
        filename = tournament.save_results(str(tmp_path / "out" / "results.json"))
        data = json.loads(open(filename).read())
        assert data["tournament"] == "save"
        assert data["engines"] == ["alpha", "beta"]
        assert data["games"][0]["result"] == "F-0"
        assert data["pairs"][0]["games"] == 1


class TestPtnWriter:
    """Tests for ordered PTN output."""

    @staticmethod
    def finished(round_number):
        entry = ScheduleEntry(round_number, 0, 1, None, 5, 0.0, TC)
        result = MatchResult(entry, "alpha", "beta")
        result.moves = ["a1"]
        result.comments = [""]
        result.result = Win(Color.WHITE, Reason.FORFEIT)
        return result

    def test_out_of_order_games_held_back(self, tmp_path):
        path = tmp_path / "games.ptn"
        writer = PtnWriter(str(path))
        writer.add_game(self.finished(1))
        assert writer.written == 0
        writer.add_game(self.finished(0))
        assert writer.written == 2
        text = path.read_text()
        assert text.index('[Round "1"]') < text.index('[Round "2"]')

    def test_skipped_round_releases_later_games(self, tmp_path):
        writer = PtnWriter(str(tmp_path / "games.ptn"))
        writer.add_game(self.finished(1))
        writer.skip_round(0)
        assert writer.written == 1

    def test_close_writes_remaining(self, tmp_path):
        path = tmp_path / "games.ptn"
        writer = PtnWriter(str(path))
        writer.add_game(self.finished(3))
        writer.add_game(self.finished(2))
        writer.close()
        text = path.read_text()
        assert writer.written == 2
        assert text.index('[Round "3"]') < text.index('[Round "4"]')


def test_engine_config_command():
    config = EngineConfig("alpha", "/usr/bin/alpha", args=["--tei"])
    assert config.command == ["/usr/bin/alpha", "--tei"]
