"""Registro de auditoría de cada ensayo de la simulación."""
from __future__ import annotations

from datetime import datetime, timezone
import logging
from pathlib import Path
import sqlite3
from typing import TYPE_CHECKING, List, Protocol

from .errors import PersistenceError

if TYPE_CHECKING:
    from .simulation import TrialResult

logger = logging.getLogger(__name__)


class TrialSink(Protocol):
    """Destino que recibe cada ``TrialResult`` a medida que termina."""

    def record(self, result: "TrialResult") -> None: ...

    def close(self) -> None: ...


class MemoryTrialSink:
    """Guarda los resultados en memoria, en el orden en que llegan."""

    def __init__(self) -> None:
        self.results: List["TrialResult"] = []

    def record(self, result: "TrialResult") -> None:
        self.results.append(result)

    def close(self) -> None:
        pass


class SqliteTrialSink:
    """Guarda cada ensayo en la tabla ``trial_results`` de un archivo SQLite.

    La conexión se comparte entre hilos; quien llama debe serializar las
    escrituras (la simulación lo hace bajo su propio lock). Las inserciones se
    confirman cada ``commit_every`` filas y al cerrar.
    """

    def __init__(self, db_path: Path | str, commit_every: int = 1000) -> None:
        self.db_path = str(db_path)
        self.commit_every = max(1, commit_every)
        self._pending = 0
        try:
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self._ensure_table()
        except sqlite3.Error as exc:
            raise PersistenceError(f"No se pudo abrir {self.db_path}: {exc}") from exc

    def __enter__(self) -> "SqliteTrialSink":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def record(self, result: "TrialResult") -> None:
        created_at = datetime.now(timezone.utc).isoformat()
        try:
            self._connection.execute(
                """
                INSERT INTO trial_results (
                    trial_index,
                    candidate_a,
                    candidate_b,
                    difference,
                    winner,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    result.index,
                    result.candidate_a,
                    result.candidate_b,
                    result.difference,
                    result.winner.value,
                    created_at,
                ),
            )
            self._pending += 1
            if self._pending >= self.commit_every:
                self._connection.commit()
                self._pending = 0
        except sqlite3.Error as exc:
            raise PersistenceError(
                f"No se pudo registrar el ensayo {result.index}: {exc}"
            ) from exc

    def close(self) -> None:
        try:
            self._connection.commit()
        except sqlite3.Error as exc:
            logger.warning("trial_sink_commit_failed path=%s error=%s", self.db_path, exc)
        finally:
            self._connection.close()

    def _ensure_table(self) -> None:
        with self._connection:
            self._connection.execute(
                """
                CREATE TABLE IF NOT EXISTS trial_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    trial_index INTEGER NOT NULL,
                    candidate_a INTEGER NOT NULL,
                    candidate_b INTEGER NOT NULL,
                    difference INTEGER NOT NULL,
                    winner TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )


__all__ = ["TrialSink", "MemoryTrialSink", "SqliteTrialSink"]
