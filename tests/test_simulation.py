from __future__ import annotations

import json
import sqlite3

import pytest

from simulacion_electoral.data_loader import SimulationConfig, config_from_dict
from simulacion_electoral.errors import (
    ConfigurationError,
    ModelPreconditionError,
    PersistenceError,
    SimulationError,
)
from simulacion_electoral.outcome_models import Method, RegionSummary
from simulacion_electoral.persistence import MemoryTrialSink, SqliteTrialSink
from simulacion_electoral.simulation import (
    AggregateTally,
    Simulation,
    SimulationReport,
    SimulationState,
    Winner,
    main,
    run_trial,
    simulate,
    trial_rng,
)


class _ZeroDraws:
    def random(self) -> float:
        return 0.0


class _FailingSink:
    def record(self, result) -> None:
        raise PersistenceError("disco lleno")

    def close(self) -> None:
        pass


class _CancellingSink(MemoryTrialSink):
    simulation: Simulation | None = None

    def record(self, result) -> None:
        super().record(result)
        self.simulation.cancel()


def _region(name: str, a: float, b: float, electors: int, variance: float = 0.0) -> RegionSummary:
    return RegionSummary(region=name, candidate_a=a, candidate_b=b, variance=variance, electors=electors)


def _config(**overrides) -> SimulationConfig:
    values = dict(
        regions=(
            _region("Norte", 52, 45, 9, variance=3.0),
            _region("Centro", 47, 49, 14, variance=2.5),
            _region("Sur", 50, 50, 6, variance=4.0),
        ),
        trials=300,
        method=Method.COIN_FLIP,
        seed=1234,
        workers=4,
    )
    values.update(overrides)
    return SimulationConfig(**values)


def test_trial_with_zero_draws_gives_every_region_to_candidate_a():
    regions = [_region("X", 40, 60, 5), _region("Y", 30, 70, 5)]

    result = run_trial(regions, Method.COIN_FLIP, _ZeroDraws(), index=7)

    assert (result.candidate_a, result.candidate_b) == (10, 0)
    assert result.difference == 10
    assert result.winner is Winner.A
    assert result.index == 7


def test_trial_tie_only_when_totals_match():
    tied = run_trial([_region("X", 50, 50, 4)], Method.PROPORTIONAL, _ZeroDraws())
    not_tied = run_trial([_region("X", 50, 50, 5)], Method.PROPORTIONAL, _ZeroDraws())

    assert tied.winner is Winner.TIE
    assert (tied.candidate_a, tied.candidate_b) == (2, 2)
    assert not_tied.winner is Winner.B
    assert (not_tied.candidate_a, not_tied.candidate_b) == (2, 3)


def test_raw_poll_results_trial_for_single_region():
    result = run_trial([_region("X", 60, 40, 10)], Method.RAW_POLL_RESULTS, _ZeroDraws())

    assert (result.candidate_a, result.candidate_b) == (10, 0)


def test_trial_rng_is_derived_from_seed_and_index():
    assert trial_rng(5, 3).random() == trial_rng(5, 3).random()
    assert trial_rng(5, 3).random() != trial_rng(5, 4).random()


def test_tally_counts_sum_to_trial_count():
    simulation = Simulation(_config())
    report = simulation.run()

    assert simulation.state is SimulationState.COMPLETE
    assert report.total == 300
    assert sum(simulation.tally.counts.values()) == 300
    assert sum(report.percentage(winner) for winner in Winner) == pytest.approx(100.0)
    assert not report.cancelled


def test_same_seed_reproduces_single_trial():
    config = _config(regions=(_region("Solo", 50, 50, 3),), trials=1, seed=42)
    first, second = MemoryTrialSink(), MemoryTrialSink()

    simulate(config, sink=first)
    simulate(config, sink=second)

    assert first.results == second.results
    assert len(first.results) == 1


def test_same_seed_gives_same_distribution_with_different_workers():
    one = simulate(_config(method=Method.BELL_CURVE, workers=1))
    many = simulate(_config(method=Method.BELL_CURVE, workers=8))

    assert one.counts == many.counts
    assert one.seed == many.seed == 1234


@pytest.mark.parametrize(
    "overrides",
    [
        {"trials": 0},
        {"trials": -5},
        {"regions": ()},
        {"method": "Zeroes"},
    ],
)
def test_invalid_configuration_fails_before_running(overrides):
    sink = MemoryTrialSink()
    simulation = Simulation(_config(**overrides), sink=sink)

    with pytest.raises(ConfigurationError):
        simulation.run()

    assert simulation.state is SimulationState.FAILED
    assert sink.results == []


def test_model_precondition_failure_fails_the_whole_run():
    config = _config(
        regions=(_region("Vacía", 0, 0, 3), _region("Llena", 60, 40, 3)),
        method=Method.PROPORTIONAL,
    )
    simulation = Simulation(config)

    with pytest.raises(ModelPreconditionError, match="Vacía"):
        simulation.run()

    assert simulation.state is SimulationState.FAILED


def test_persistence_failures_do_not_abort_the_run():
    simulation = Simulation(_config(trials=50), sink=_FailingSink())

    report = simulation.run()

    assert report.total == 50
    assert report.persistence_failures == 50
    assert "Ensayos sin registrar: 50" in report.format_report()


def test_cancel_discards_trials_in_flight():
    sink = _CancellingSink()
    simulation = Simulation(_config(trials=5000, workers=4), sink=sink)
    sink.simulation = simulation

    report = simulation.run()

    assert report.cancelled
    assert report.total == 1
    assert len(sink.results) == 1
    assert simulation.state is SimulationState.CANCELLED


def test_run_cannot_be_repeated():
    simulation = Simulation(_config(trials=5))
    simulation.run()

    with pytest.raises(SimulationError, match="ya fue ejecutada"):
        simulation.run()


def test_sqlite_sink_records_every_trial(tmp_path):
    db_path = tmp_path / "trials.db"
    with SqliteTrialSink(db_path, commit_every=7) as sink:
        report = simulate(_config(trials=25), sink=sink)

    connection = sqlite3.connect(db_path)
    try:
        rows = connection.execute(
            "SELECT trial_index, candidate_a + candidate_b, winner, created_at FROM trial_results"
        ).fetchall()
    finally:
        connection.close()

    assert report.total == 25
    assert sorted(row[0] for row in rows) == list(range(25))
    assert all(row[1] == 29 for row in rows)
    assert {row[2] for row in rows} <= {"A", "B", "Tie"}
    assert all(row[3] for row in rows)


def test_tally_counts_each_winner():
    tally = AggregateTally()
    for winner in (Winner.A, Winner.A, Winner.B, Winner.TIE):
        tally.add(winner)

    assert tally.total == 4
    assert tally.counts == {Winner.A: 2, Winner.B: 1, Winner.TIE: 1}


def test_report_text_and_structured_output():
    report = SimulationReport(
        method=Method.COIN_FLIP,
        seed=99,
        trials=10,
        counts={Winner.A: 6, Winner.B: 3, Winner.TIE: 1},
        candidates=("Trump", "Biden"),
    )

    text = report.format_report()
    data = report.to_dict()

    assert text.splitlines()[0] == "CoinFlip RESULTS (SEED: 99)"
    assert "TOTAL: 00010" in text
    assert "TRUMP: 00006 (060.00 %)" in text
    assert "TIE:   00001 (010.00 %)" in text
    assert data["results"]["Biden"] == {"count": 3, "percentage": 30.0}
    assert data["total"] == 10
    assert data["seed"] == 99


def test_cli_prints_json_summary(tmp_path, capsys):
    config_path = tmp_path / "polls.json"
    config_path.write_text(
        json.dumps(
            {
                "Runs": 40,
                "Method": "RandomOther",
                "candidates": ["Trump", "Biden"],
                "Polls": [
                    {"State": "Ohio", "Trump": 47, "Biden": 45, "Electors": 18},
                    {"State": "Iowa", "Trump": 48, "Biden": 44, "Electors": 6},
                ],
            }
        ),
        encoding="utf-8",
    )

    exit_code = main(["--config", str(config_path), "--seed", "3", "--json", "--workers", "2"])

    data = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert data["method"] == "RandomOther"
    assert data["seed"] == 3
    assert data["total"] == 40
    assert set(data["results"]) == {"Trump", "Biden", "Tie"}


def test_cli_reports_configuration_errors(tmp_path, capsys):
    config_path = tmp_path / "polls.json"
    config_path.write_text(
        json.dumps({"trials": 10, "method": "Nope", "regions": [{"region": "X", "electors": 3}]}),
        encoding="utf-8",
    )

    exit_code = main(["--config", str(config_path)])

    assert exit_code == 1
    assert "Nope" in capsys.readouterr().err


def test_cli_uses_poll_file_and_audit_log(tmp_path, capsys):
    config_path = tmp_path / "polls.json"
    config_path.write_text(
        json.dumps(
            {
                "trials": 12,
                "method": "RawPollResults",
                "candidates": ["Trump", "Biden"],
                "regions": [{"region": "Ohio", "candidate_a": 40, "candidate_b": 55, "electors": 18}],
            }
        ),
        encoding="utf-8",
    )
    polls_path = tmp_path / "live.json"
    polls_path.write_text(
        json.dumps(
            [
                {
                    "id": "1",
                    "state": "Ohio",
                    "answers": [
                        {"choice": "Trump", "pct": "49"},
                        {"choice": "Biden", "pct": "44"},
                    ],
                }
            ]
        ),
        encoding="utf-8",
    )
    db_path = tmp_path / "trials.db"

    exit_code = main(
        ["--config", str(config_path), "--polls", str(polls_path), "--db", str(db_path), "--seed", "1"]
    )

    out = capsys.readouterr().out
    connection = sqlite3.connect(db_path)
    try:
        (rows,) = connection.execute("SELECT COUNT(*) FROM trial_results").fetchone()
    finally:
        connection.close()
    assert exit_code == 0
    assert "Se leyeron 1 encuestas" in out
    assert "TRUMP: 00012 (100.00 %)" in out
    assert rows == 12


def test_non_finite_variance_is_rejected_before_running():
    config = config_from_dict(
        {
            "trials": 200,
            "method": "BellCurve",
            "seed": 5,
            "regions": [
                {"region": "Ohio", "candidate_a": 60, "candidate_b": 40, "variance": "nan", "electors": 10}
            ],
        }
    )

    with pytest.raises(ConfigurationError, match="varianza"):
        simulate(config)
