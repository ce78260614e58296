"""
Contract between the planner and the generative recommendation oracle.

The oracle receives instructions, a payload (prompt text plus named sections
such as CANDIDATES and USED_IDS) and a pydantic output schema, and returns a
validated instance of that schema. Its answers are never trusted beyond the
schema: callers re-check every identity against what they supplied.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel

from tanda_planner.planning.errors import (
    OracleContractViolation,
    OracleError,
    OracleTimeout,
    OracleUnavailable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class Oracle(Protocol):
    def complete(self, instructions: str, payload: Dict[str, Any], schema: Type[T]) -> T:
        ...


class PlanningCancelled(Exception):
    """Raised inside a run once the consumer has gone away."""
    pass


def ask_oracle(
    oracle: Optional[Oracle],
    instructions: str,
    payload: Dict[str, Any],
    schema: Type[T],
    *,
    purpose: str,
    cancel_event: Optional[threading.Event] = None,
) -> Optional[T]:
    """
    Call the oracle and degrade recoverable failures to ``None``.

    Contract violations, timeouts and other oracle errors are logged and
    count as a failed attempt. ``OracleUnavailable`` propagates because it
    ends the run. No call is made once ``cancel_event`` is set.
    """
    if cancel_event is not None and cancel_event.is_set():
        raise PlanningCancelled(purpose)
    if oracle is None:
        return None

    start = time.perf_counter()
    try:
        result = oracle.complete(instructions, payload, schema)
    except OracleUnavailable:
        raise
    except OracleContractViolation as e:
        logger.warning(f"{purpose}: oracle response rejected ({e})")
        return None
    except OracleTimeout as e:
        logger.warning(f"{purpose}: oracle call timed out ({e})")
        return None
    except OracleError as e:
        logger.warning(f"{purpose}: oracle call failed ({e})")
        return None

    elapsed = time.perf_counter() - start
    logger.debug(f"{purpose}: oracle answered in {elapsed * 1000:.0f}ms")
    if not isinstance(result, schema):
        logger.warning(f"{purpose}: oracle returned {type(result).__name__}, expected {schema.__name__}")
        return None
    return result
