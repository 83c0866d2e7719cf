"""Lectura de la configuración y normalización de encuestas por región."""
from __future__ import annotations

from dataclasses import dataclass, replace
import json
import logging
import math
from pathlib import Path
import re
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import pandas as pd
import requests

from .errors import ConfigurationError, IngestionError
from .outcome_models import Method, RegionSummary

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATES = ("A", "B")
SUPPORT_COLUMNS = ["candidate_a", "candidate_b"]


@dataclass(frozen=True)
class SimulationConfig:
    """Parámetros completos de una simulación."""

    regions: Tuple[RegionSummary, ...]
    trials: int
    method: Method | str
    seed: int | None = None
    key: str | None = None
    candidates: Tuple[str, str] = DEFAULT_CANDIDATES
    workers: int | None = None

    def validate(self) -> Method:
        """Revisa la configuración y entrega el método ya interpretado."""

        method = Method.parse(self.method)
        if isinstance(self.trials, bool) or not isinstance(self.trials, int) or self.trials <= 0:
            raise ConfigurationError(
                f"La cantidad de ensayos debe ser un entero positivo (se recibió {self.trials!r})"
            )
        if not self.regions:
            raise ConfigurationError("La simulación no tiene regiones")
        if self.seed is not None and self.seed < 0:
            raise ConfigurationError(f"La semilla no puede ser negativa ({self.seed})")
        if self.workers is not None and self.workers <= 0:
            raise ConfigurationError(
                f"La cantidad de hilos debe ser positiva (se recibió {self.workers})"
            )

        seen: set[str] = set()
        for region in self.regions:
            if region.region in seen:
                raise ConfigurationError(f"La región {region.region!r} está repetida")
            seen.add(region.region)
            _validate_region(region, method)
        return method


def _validate_region(region: RegionSummary, method: Method) -> None:
    for label, value in (("candidate_a", region.candidate_a), ("candidate_b", region.candidate_b)):
        if not math.isfinite(value) or not 0 <= value <= 100:
            raise ConfigurationError(
                f"Región {region.region!r}: {label} debe estar entre 0 y 100 (se recibió {value})"
            )
    if not math.isfinite(region.variance) or region.variance < 0:
        raise ConfigurationError(
            f"Región {region.region!r}: la varianza debe ser un número finito y no negativo ({region.variance})"
        )
    if region.electors < 0:
        raise ConfigurationError(
            f"Región {region.region!r}: los electores no pueden ser negativos ({region.electors})"
        )
    if method is Method.RANDOM_OTHER and region.candidate_a + region.candidate_b > 100:
        raise ConfigurationError(
            f"Región {region.region!r}: los apoyos suman más de 100 y no dejan indecisos"
        )


def load_config(path: Path | str) -> SimulationConfig:
    """Carga la configuración de la simulación desde un archivo JSON.

    Se aceptan también las claves del formato antiguo (``Polls``, ``Runs``,
    ``Method``, ``Key``) y, dentro de cada región, ``State``, ``Electors``,
    ``Variance`` y los nombres de los candidatos como claves de apoyo.
    """

    config_path = Path(path)
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigurationError(f"No se encontró el archivo de configuración {config_path}") from None
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"No pude leer {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{config_path} debe contener un objeto JSON")
    return config_from_dict(raw)


def config_from_dict(raw: Dict[str, Any]) -> SimulationConfig:
    candidates = _parse_candidates(raw.get("candidates"))
    raw_regions = _pick(raw, "regions", "Polls", default=[])
    if not isinstance(raw_regions, list):
        raise ConfigurationError("'regions' debe ser una lista")

    regions = tuple(_build_region(item, position, candidates) for position, item in enumerate(raw_regions))
    trials = _pick(raw, "trials", "Runs")
    seed = raw.get("seed")
    workers = raw.get("workers")
    return SimulationConfig(
        regions=regions,
        trials=_parse_int(trials, "trials") if trials is not None else 0,
        method=_pick(raw, "method", "Method", default=Method.COIN_FLIP.value),
        seed=_parse_int(seed, "seed") if seed is not None else None,
        key=_pick(raw, "key", "Key") or None,
        candidates=candidates,
        workers=_parse_int(workers, "workers") if workers is not None else None,
    )


def _parse_candidates(value: Any) -> Tuple[str, str]:
    if value is None:
        return DEFAULT_CANDIDATES
    if (
        not isinstance(value, (list, tuple))
        or len(value) != 2
        or not all(isinstance(name, str) and name.strip() for name in value)
    ):
        raise ConfigurationError("'candidates' debe ser una lista con dos nombres")
    return value[0].strip(), value[1].strip()


def _build_region(raw: Any, position: int, candidates: Tuple[str, str]) -> RegionSummary:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"La región en la posición {position} no es un objeto")
    name = _pick(raw, "region", "State", "state")
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(f"La región en la posición {position} no tiene identificador")
    name = name.strip()
    if not any(key in raw for key in ("candidate_a", "candidate_b", *candidates)):
        logger.warning(
            "region_without_support region=%s candidates=%s", name, ",".join(candidates)
        )
    return RegionSummary(
        region=name,
        candidate_a=_parse_float(_pick(raw, "candidate_a", candidates[0], default=0.0), name, "candidate_a"),
        candidate_b=_parse_float(_pick(raw, "candidate_b", candidates[1], default=0.0), name, "candidate_b"),
        variance=_parse_float(_pick(raw, "variance", "Variance", default=0.0), name, "variance"),
        electors=_parse_int(_pick(raw, "electors", "Electors", default=0), f"{name}.electors"),
    )


def _pick(raw: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return default


def _parse_float(value: Any, region: str, field: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"Región {region!r}: {field} no es numérico ({value!r})")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Región {region!r}: {field} no es numérico ({value!r})") from None


def _parse_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{field} debe ser un entero ({value!r})")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ConfigurationError(f"{field} debe ser un entero ({value!r})")


@dataclass(frozen=True)
class PollIngestion:
    """Apoyo promedio por región obtenido de las encuestas.

    ``support`` tiene una fila por región y las columnas ``candidate_a`` y
    ``candidate_b``.
    """

    support: pd.DataFrame
    polls_read: int
    skipped_records: int
    skipped_answers: int
    unmatched_answers: int = 0


def load_poll_records(source: Path | str, timeout: float = 30.0) -> List[Dict[str, Any]]:
    """Carga las encuestas crudas desde un archivo JSON o una URL."""

    text_source = str(source)
    if text_source.startswith(("http://", "https://")):
        try:
            response = requests.get(text_source, timeout=timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise IngestionError(f"No se pudieron descargar las encuestas de {text_source}: {exc}") from exc
        try:
            records = response.json()
        except ValueError as exc:
            raise IngestionError(f"{text_source} no devolvió JSON válido") from exc
    else:
        path = Path(source)
        if not path.exists():
            raise IngestionError(f"No se encontró el archivo de encuestas {path}")
        try:
            records = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise IngestionError(f"No pude leer las encuestas de {path}: {exc}") from exc

    if not isinstance(records, list):
        raise IngestionError(f"Las encuestas de {text_source} deben ser una lista de registros")
    logger.info("polls_loaded source=%s records=%d", text_source, len(records))
    return records


def summarize_polls(records: Sequence[Any], candidates: Tuple[str, str]) -> PollIngestion:
    """Reduce las encuestas crudas a un apoyo promedio por región y candidato.

    Cada respuesta se asigna al candidato cuyo nombre aparece en ``choice`` como
    palabra completa; las que no corresponden a ninguno se cuentan en
    ``unmatched_answers``. Los registros sin región o sin respuestas y las
    respuestas con un porcentaje ilegible se descartan y se cuentan.
    """

    if tuple(candidates) == DEFAULT_CANDIDATES:
        raise IngestionError(
            "Para leer encuestas hay que indicar los nombres de los candidatos en 'candidates'"
        )

    rows: List[Dict[str, Any]] = []
    skipped_records = 0
    skipped_answers = 0
    for record in records:
        state = record.get("state") if isinstance(record, dict) else None
        answers = record.get("answers") if isinstance(record, dict) else None
        if not isinstance(state, str) or not state.strip() or not isinstance(answers, list):
            skipped_records += 1
            continue
        for answer in answers:
            if not isinstance(answer, dict):
                skipped_answers += 1
                continue
            rows.append(
                {
                    "state": state.strip(),
                    "choice": str(answer.get("choice") or ""),
                    "pct": answer.get("pct"),
                }
            )

    df = pd.DataFrame(rows, columns=["state", "choice", "pct"])
    df["pct"] = pd.to_numeric(df["pct"], errors="coerce")
    invalid = df["pct"].isna()
    skipped_answers += int(invalid.sum())
    df = df.loc[~invalid].copy()

    df["candidate"] = _match_candidates(df["choice"], candidates)
    unmatched = df["candidate"].isna()
    unmatched_answers = int(unmatched.sum())
    df = df.loc[~unmatched]
    if df.empty:
        raise IngestionError(
            "Ninguna encuesta tiene respuestas válidas para {0}".format(" ni ".join(candidates))
        )

    support = (
        df.pivot_table(index="state", columns="candidate", values="pct", aggfunc="mean")
        .reindex(columns=SUPPORT_COLUMNS)
        .fillna(0.0)
    )
    if skipped_records or skipped_answers or unmatched_answers:
        logger.warning(
            "polls_skipped records=%d answers=%d unmatched=%d",
            skipped_records,
            skipped_answers,
            unmatched_answers,
        )
    return PollIngestion(
        support=support,
        polls_read=len(records),
        skipped_records=skipped_records,
        skipped_answers=skipped_answers,
        unmatched_answers=unmatched_answers,
    )


def _match_candidates(choices: pd.Series, candidates: Tuple[str, str]) -> pd.Series:
    lowered = choices.astype(str).str.lower()
    matched = pd.Series(None, index=choices.index, dtype=object)
    for column, name in zip(SUPPORT_COLUMNS, candidates):
        pattern = rf"\b{re.escape(name.lower())}\b"
        mask = lowered.str.contains(pattern, regex=True) & matched.isna()
        matched[mask] = column
    return matched


def apply_poll_summary(
    regions: Iterable[RegionSummary], ingestion: PollIngestion
) -> Tuple[RegionSummary, ...]:
    """Reemplaza el apoyo de cada región configurada por el de las encuestas.

    La varianza y los electores se mantienen desde la configuración; las
    regiones sin encuestas quedan igual.
    """

    support = ingestion.support
    updated: List[RegionSummary] = []
    configured: set[str] = set()
    for region in regions:
        configured.add(region.region)
        if region.region not in support.index:
            updated.append(region)
            continue
        row = support.loc[region.region]
        updated.append(
            replace(
                region,
                candidate_a=float(row["candidate_a"]),
                candidate_b=float(row["candidate_b"]),
            )
        )

    for state in support.index:
        if state not in configured:
            logger.warning("poll_region_without_electors region=%s", state)
    return tuple(updated)


__all__ = [
    "SimulationConfig",
    "PollIngestion",
    "load_config",
    "config_from_dict",
    "load_poll_records",
    "summarize_polls",
    "apply_poll_summary",
]
