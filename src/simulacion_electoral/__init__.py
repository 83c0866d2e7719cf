"""Herramientas para estimar el resultado de una elección mediante simulación."""

from .data_loader import SimulationConfig, load_config
from .errors import (
    ConfigurationError,
    IngestionError,
    ModelPreconditionError,
    PersistenceError,
    SeedSourceError,
    SimulationError,
)
from .outcome_models import Method, RegionOutcome, RegionSummary, region_outcome
from .simulation import AggregateTally, Simulation, SimulationReport, TrialResult, Winner, run_trial, simulate

__all__ = [
    "SimulationConfig",
    "load_config",
    "Method",
    "RegionSummary",
    "RegionOutcome",
    "region_outcome",
    "run_trial",
    "simulate",
    "Simulation",
    "SimulationReport",
    "AggregateTally",
    "TrialResult",
    "Winner",
    "SimulationError",
    "ConfigurationError",
    "ModelPreconditionError",
    "IngestionError",
    "PersistenceError",
    "SeedSourceError",
]
