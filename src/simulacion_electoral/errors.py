"""Errores propios de la simulación electoral."""
from __future__ import annotations


class SimulationError(Exception):
    """Base de todos los errores de la simulación."""


class ConfigurationError(SimulationError):
    """Configuración inválida; se detecta antes de ejecutar cualquier ensayo."""


class ModelPreconditionError(SimulationError):
    """Un método de resultado regional no puede aplicarse a los datos de una región."""


class IngestionError(SimulationError):
    """No fue posible cargar los datos de encuestas."""


class PersistenceError(SimulationError):
    """Falló la escritura del registro de ensayos."""


class SeedSourceError(SimulationError):
    """La fuente externa de aleatoriedad no entregó una semilla válida."""


__all__ = [
    "SimulationError",
    "ConfigurationError",
    "ModelPreconditionError",
    "IngestionError",
    "PersistenceError",
    "SeedSourceError",
]
