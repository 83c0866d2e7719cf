"""Simulación Monte Carlo de una elección entre dos candidatos."""
from __future__ import annotations

import argparse
from collections import Counter
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from enum import Enum
import json
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Sequence, Set, Tuple

import numpy as np

if __package__ in (None, ""):
    # Permite ejecutar este archivo directamente (por ejemplo, desde Spyder)
    # añadiendo la carpeta raíz del paquete al ``sys.path``.
    PACKAGE_ROOT = Path(__file__).resolve().parents[1]
    if str(PACKAGE_ROOT) not in sys.path:
        sys.path.insert(0, str(PACKAGE_ROOT))

from simulacion_electoral.data_loader import (
    SimulationConfig,
    apply_poll_summary,
    load_config,
    load_poll_records,
    summarize_polls,
)
from simulacion_electoral.errors import PersistenceError, SimulationError
from simulacion_electoral.outcome_models import Method, RandomSource, RegionSummary, region_outcome
from simulacion_electoral.persistence import SqliteTrialSink, TrialSink
from simulacion_electoral.seeds import resolve_seed

logger = logging.getLogger(__name__)


class Winner(str, Enum):
    A = "A"
    B = "B"
    TIE = "Tie"


@dataclass(frozen=True)
class TrialResult:
    """Resultado de un ensayo completo."""

    index: int
    candidate_a: int
    candidate_b: int
    difference: int
    winner: Winner


def run_trial(
    regions: Sequence[RegionSummary], method: Method, rng: RandomSource, index: int = 0
) -> TrialResult:
    """Aplica ``method`` a todas las regiones y decide el ganador del ensayo."""

    total_a = 0
    total_b = 0
    for region in regions:
        outcome = region_outcome(region, method, rng)
        total_a += outcome.candidate_a
        total_b += outcome.candidate_b

    if total_a > total_b:
        winner = Winner.A
    elif total_b > total_a:
        winner = Winner.B
    else:
        winner = Winner.TIE
    return TrialResult(
        index=index,
        candidate_a=total_a,
        candidate_b=total_b,
        difference=abs(total_a - total_b),
        winner=winner,
    )


def trial_rng(seed: int, index: int) -> np.random.Generator:
    """Generador propio del ensayo ``index``, derivado de la semilla de la corrida."""

    return np.random.default_rng(np.random.SeedSequence(seed, spawn_key=(index,)))


@dataclass
class AggregateTally:
    """Cantidad de ensayos ganados por cada resultado."""

    counts: Counter[Winner] = field(default_factory=Counter)

    def add(self, winner: Winner) -> None:
        self.counts[winner] += 1

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass(frozen=True)
class SimulationReport:
    """Resumen final de una corrida."""

    method: Method
    seed: int
    trials: int
    counts: Dict[Winner, int]
    candidates: Tuple[str, str]
    persistence_failures: int = 0
    cancelled: bool = False

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def percentage(self, winner: Winner) -> float:
        total = self.total
        return self.counts.get(winner, 0) * 100 / total if total else 0.0

    def label(self, winner: Winner) -> str:
        if winner is Winner.A:
            return self.candidates[0]
        if winner is Winner.B:
            return self.candidates[1]
        return "Tie"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "seed": self.seed,
            "trials": self.trials,
            "total": self.total,
            "cancelled": self.cancelled,
            "persistence_failures": self.persistence_failures,
            "results": {
                self.label(winner): {
                    "count": self.counts.get(winner, 0),
                    "percentage": self.percentage(winner),
                }
                for winner in Winner
            },
        }

    def format_report(self) -> str:
        labels = {winner: self.label(winner).upper() + ":" for winner in Winner}
        width = max(len(text) for text in [*labels.values(), "TOTAL:"])
        lines = [
            f"{self.method.value} RESULTS (SEED: {self.seed})",
            f"{'TOTAL:':<{width}} {self.total:05d}",
        ]
        for winner in Winner:
            lines.append(
                f"{labels[winner]:<{width}} {self.counts.get(winner, 0):05d} "
                f"({self.percentage(winner):06.2f} %)"
            )
        if self.cancelled:
            lines.append(f"Simulación interrumpida: {self.total} de {self.trials} ensayos")
        if self.persistence_failures:
            lines.append(f"Ensayos sin registrar: {self.persistence_failures}")
        return "\n".join(lines)


class SimulationState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    RUNNING = "running"
    AGGREGATING = "aggregating"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Simulation:
    """Ejecuta los ensayos de una configuración en paralelo y acumula el conteo.

    Cada ensayo usa su propio generador derivado de ``(semilla, índice)``. El
    conteo y el registro de auditoría se actualizan bajo un mismo lock. Si un
    ensayo falla, la corrida completa falla y se propaga la excepción original.
    """

    def __init__(self, config: SimulationConfig, sink: TrialSink | None = None) -> None:
        self.config = config
        self.sink = sink
        self.state = SimulationState.IDLE
        self.tally = AggregateTally()
        self.seed: int | None = None
        self.persistence_failures = 0
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._cancel_requested = False

    def cancel(self) -> None:
        """Deja de lanzar ensayos y descarta los que estén en curso."""

        self._cancel_requested = True
        self._stop.set()

    def run(self) -> SimulationReport:
        if self.state is not SimulationState.IDLE:
            raise SimulationError(f"La simulación ya fue ejecutada (estado {self.state.value})")
        self.state = SimulationState.VALIDATING
        try:
            method = self.config.validate()
            self.seed = resolve_seed(self.config.seed, self.config.key)
        except BaseException:
            self.state = SimulationState.FAILED
            raise

        self.state = SimulationState.RUNNING
        regions = tuple(self.config.regions)
        workers = self.config.workers or min(32, (os.cpu_count() or 1) + 4)
        logger.info(
            "simulation_started method=%s trials=%d regions=%d seed=%d workers=%d",
            method.value,
            self.config.trials,
            len(regions),
            self.seed,
            workers,
        )
        try:
            self._run_trials(regions, method, self.seed, workers)
        except KeyboardInterrupt:
            self.cancel()
            logger.warning("simulation_interrupted merged=%d", self.tally.total)
        except BaseException as exc:
            self._stop.set()
            self.state = SimulationState.FAILED
            logger.error("simulation_failed merged=%d error=%s", self.tally.total, exc)
            raise

        self.state = SimulationState.AGGREGATING
        with self._lock:
            report = SimulationReport(
                method=method,
                seed=self.seed,
                trials=self.config.trials,
                counts={winner: self.tally.counts[winner] for winner in Winner},
                candidates=self.config.candidates,
                persistence_failures=self.persistence_failures,
                cancelled=self._cancel_requested,
            )
        self.state = SimulationState.CANCELLED if self._cancel_requested else SimulationState.COMPLETE
        logger.info("simulation_finished state=%s total=%d", self.state.value, report.total)
        return report

    def _run_trials(
        self, regions: Tuple[RegionSummary, ...], method: Method, seed: int, workers: int
    ) -> None:
        max_pending = workers * 4
        pending: Set[Future] = set()
        next_index = 0
        with ThreadPoolExecutor(max_workers=workers) as executor:
            try:
                while True:
                    while (
                        not self._stop.is_set()
                        and next_index < self.config.trials
                        and len(pending) < max_pending
                    ):
                        pending.add(executor.submit(self._execute, regions, method, seed, next_index))
                        next_index += 1
                    if not pending:
                        break
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    for future in done:
                        future.result()
            except BaseException:
                self._stop.set()
                for future in pending:
                    future.cancel()
                raise

    def _execute(
        self, regions: Tuple[RegionSummary, ...], method: Method, seed: int, index: int
    ) -> None:
        if self._stop.is_set():
            return
        result = run_trial(regions, method, trial_rng(seed, index), index)
        with self._lock:
            if self._stop.is_set():
                return
            self.tally.add(result.winner)
            self._record(result)

    def _record(self, result: TrialResult) -> None:
        if self.sink is None:
            return
        try:
            self.sink.record(result)
        except Exception as exc:  # noqa: BLE001
            self.persistence_failures += 1
            if self.persistence_failures == 1:
                logger.warning("trial_record_failed index=%d error=%s", result.index, exc)
            else:
                logger.debug("trial_record_failed index=%d error=%s", result.index, exc)


def simulate(config: SimulationConfig, sink: TrialSink | None = None) -> SimulationReport:
    """Atajo para ejecutar una simulación completa."""

    return Simulation(config, sink=sink).run()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description=(
            "Estima la probabilidad de victoria de cada candidato simulando muchas "
            "elecciones a partir de encuestas por región."
        )
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("polls.json"),
        help="Archivo JSON con las regiones, la cantidad de ensayos y el método",
    )
    parser.add_argument(
        "--polls",
        default=None,
        help="Archivo JSON o URL con encuestas crudas que reemplazan el apoyo configurado",
    )
    parser.add_argument(
        "--method",
        choices=[method.value for method in Method],
        default=None,
        help="Método para decidir cada región (reemplaza el de la configuración)",
    )
    parser.add_argument("--trials", type=int, default=None, help="Cantidad de ensayos")
    parser.add_argument("--seed", type=int, default=None, help="Semilla fija para reproducir una corrida")
    parser.add_argument("--workers", type=int, default=None, help="Cantidad de hilos de trabajo")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Archivo SQLite donde registrar cada ensayo",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Imprime el resultado como JSON en lugar del resumen de texto",
    )
    parser.add_argument("--log-level", default="INFO", help="Nivel de logging (por defecto INFO)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        config = load_config(args.config)
        overrides: Dict[str, Any] = {}
        if args.method is not None:
            overrides["method"] = args.method
        if args.trials is not None:
            overrides["trials"] = args.trials
        if args.seed is not None:
            overrides["seed"] = args.seed
        if args.workers is not None:
            overrides["workers"] = args.workers
        if overrides:
            config = replace(config, **overrides)

        if args.polls:
            ingestion = summarize_polls(load_poll_records(args.polls), config.candidates)
            print(
                f"Se leyeron {ingestion.polls_read} encuestas "
                f"({ingestion.skipped_records} registros y {ingestion.skipped_answers} respuestas descartadas, "
                f"{ingestion.unmatched_answers} respuestas de otros candidatos)"
            )
            config = replace(config, regions=apply_poll_summary(config.regions, ingestion))

        sink = None
        if args.db:
            try:
                sink = SqliteTrialSink(args.db)
            except PersistenceError as exc:
                logger.warning("trial_sink_unavailable path=%s error=%s", args.db, exc)
        try:
            report = Simulation(config, sink=sink).run()
        finally:
            if sink is not None:
                sink.close()
    except SimulationError as exc:
        print(f"\nError: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    else:
        print(report.format_report())
    return 0


if __name__ == "__main__":
    sys.exit(main())
