"""Métodos para convertir la encuesta de una región en electores por candidato."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
import sys
from typing import Callable, Dict, Protocol

from .errors import ConfigurationError, ModelPreconditionError

# Menor valor positivo normal; 1/z sigue siendo finito.
_MIN_DRAW = sys.float_info.min


class RandomSource(Protocol):
    def random(self) -> float: ...


class Method(str, Enum):
    """Métodos disponibles para decidir el resultado de cada región."""

    RAW_POLL_RESULTS = "RawPollResults"
    COIN_FLIP = "CoinFlip"
    BELL_CURVE = "BellCurve"
    RANDOM_OTHER = "RandomOther"
    PROPORTIONAL = "Proportional"

    @classmethod
    def parse(cls, value: "Method | str") -> "Method":
        if isinstance(value, Method):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(method.value for method in cls)
            raise ConfigurationError(
                f"Método desconocido {value!r}; los válidos son: {valid}"
            ) from None


@dataclass(frozen=True)
class RegionSummary:
    """Estado de las encuestas en una región.

    ``candidate_a`` y ``candidate_b`` son porcentajes entre 0 y 100. ``variance``
    solo la usa el método de campana y ``electors`` es la cantidad de electores
    que recibe quien gane la región.
    """

    region: str
    candidate_a: float
    candidate_b: float
    variance: float = 0.0
    electors: int = 0


@dataclass(frozen=True)
class RegionOutcome:
    """Electores que obtiene cada candidato en una región."""

    candidate_a: int
    candidate_b: int


def raw_poll_results(region: RegionSummary, rng: RandomSource | None = None) -> RegionOutcome:
    """Gana quien tenga más apoyo en la encuesta; un empate no reparte electores."""

    if region.candidate_a > region.candidate_b:
        return RegionOutcome(region.electors, 0)
    if region.candidate_b > region.candidate_a:
        return RegionOutcome(0, region.electors)
    return RegionOutcome(0, 0)


def coin_flip(region: RegionSummary, rng: RandomSource) -> RegionOutcome:
    """Lanza una aguja sobre el apoyo combinado; A gana si cae en su tramo."""

    total = region.candidate_a + region.candidate_b
    needle = rng.random() * total if total > 0 else 0.0
    if needle <= region.candidate_a:
        return RegionOutcome(region.electors, 0)
    return RegionOutcome(0, region.electors)


def bell_curve_deviation(z: float) -> float:
    """Cantidad de desviaciones estándar asociada a un valor uniforme ``z`` en (0, 1)."""

    a = math.sqrt(1 / z - 1)
    b = math.sqrt(1 / z + 1)
    return math.log(a * b + 1 / z) / 2


def bell_curve(region: RegionSummary, rng: RandomSource) -> RegionOutcome:
    """Desplaza ambos apoyos en sentidos opuestos usando la varianza de la región."""

    z = max(rng.random(), _MIN_DRAW)
    deviation = region.variance * bell_curve_deviation(z)
    if rng.random() >= 0.5:
        deviation = -deviation
    adjusted_a = region.candidate_a + deviation
    adjusted_b = region.candidate_b - deviation
    if adjusted_a > adjusted_b:
        return RegionOutcome(region.electors, 0)
    return RegionOutcome(0, region.electors)


def random_other(region: RegionSummary, rng: RandomSource) -> RegionOutcome:
    """Asigna a B una porción aleatoria de los indecisos y compara con A."""

    other = rng.random() * (100 - region.candidate_a - region.candidate_b)
    if region.candidate_b + other > region.candidate_a:
        return RegionOutcome(0, region.electors)
    return RegionOutcome(region.electors, 0)


def proportional(region: RegionSummary, rng: RandomSource | None = None) -> RegionOutcome:
    """Reparte los electores según el apoyo; A redondea hacia abajo y B recibe el resto."""

    total = region.candidate_a + region.candidate_b
    if total <= 0:
        raise ModelPreconditionError(
            f"La región {region.region!r} no tiene apoyo para ningún candidato; "
            "no se puede repartir proporcionalmente"
        )
    electors_a = math.floor(region.electors * region.candidate_a / total)
    return RegionOutcome(electors_a, region.electors - electors_a)


_METHODS: Dict[Method, Callable[[RegionSummary, RandomSource], RegionOutcome]] = {
    Method.RAW_POLL_RESULTS: raw_poll_results,
    Method.COIN_FLIP: coin_flip,
    Method.BELL_CURVE: bell_curve,
    Method.RANDOM_OTHER: random_other,
    Method.PROPORTIONAL: proportional,
}


def region_outcome(region: RegionSummary, method: Method, rng: RandomSource) -> RegionOutcome:
    """Entrega los electores de cada candidato en ``region`` según ``method``."""

    return _METHODS[method](region, rng)


__all__ = [
    "Method",
    "RandomSource",
    "RegionSummary",
    "RegionOutcome",
    "region_outcome",
    "raw_poll_results",
    "coin_flip",
    "bell_curve",
    "bell_curve_deviation",
    "random_other",
    "proportional",
]
