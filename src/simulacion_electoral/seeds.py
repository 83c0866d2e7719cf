"""Obtención de la semilla de la simulación."""
from __future__ import annotations

import logging
import time
from typing import Any

import requests

from .errors import SeedSourceError

logger = logging.getLogger(__name__)

RANDOM_ORG_URL = "https://api.random.org/json-rpc/4/invoke"
RANDOM_ORG_MAX = 1_000_000_000


def resolve_seed(
    seed: int | None = None,
    key: str | None = None,
    session: requests.Session | None = None,
    timeout: float = 10.0,
) -> int:
    """Entrega la semilla a usar.

    Una semilla explícita tiene prioridad. Con ``key`` se pide un entero a
    random.org para que la semilla sea verificable; en otro caso se usa el reloj.
    """

    if seed is not None:
        return int(seed)
    if key:
        value = fetch_random_org_seed(key, session=session, timeout=timeout)
        logger.info("seed_from_random_org seed=%s", value)
        return value
    return time.time_ns()


def fetch_random_org_seed(
    key: str,
    session: requests.Session | None = None,
    timeout: float = 10.0,
) -> int:
    payload = {
        "jsonrpc": "2.0",
        "method": "generateIntegers",
        "params": {"apiKey": key, "n": 1, "min": 0, "max": RANDOM_ORG_MAX},
        "id": 1,
    }
    http = session or requests.Session()
    try:
        response = http.post(RANDOM_ORG_URL, json=payload, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as exc:
        raise SeedSourceError(f"random.org no respondió: {exc}") from exc
    finally:
        if session is None:
            http.close()
    try:
        body: Any = response.json()
    except ValueError as exc:
        raise SeedSourceError("random.org devolvió una respuesta que no es JSON") from exc

    if not isinstance(body, dict):
        raise SeedSourceError("random.org devolvió una respuesta inesperada")
    if "error" in body:
        message = body["error"].get("message") if isinstance(body["error"], dict) else body["error"]
        raise SeedSourceError(f"random.org rechazó la solicitud: {message}")
    try:
        return int(body["result"]["random"]["data"][0])
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise SeedSourceError("random.org devolvió una respuesta sin números") from exc


__all__ = ["resolve_seed", "fetch_random_org_seed", "RANDOM_ORG_URL"]
