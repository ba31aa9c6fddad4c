"""
Poll cycle IDs for log correlation.
Every fetch+reconcile attempt gets its own ID so its log lines can be grouped.
"""
import uuid
import logging
from typing import Optional
from contextvars import ContextVar

_cycle_id_var: ContextVar[Optional[str]] = ContextVar(
    'cycle_id', default=None
)

_component_var: ContextVar[Optional[str]] = ContextVar(
    'component', default=None
)


def generate_cycle_id() -> str:
    """Return a short random cycle ID (first 12 hex chars of a UUID4)."""
    return uuid.uuid4().hex[:12]


def set_cycle_id(cycle_id: str) -> None:
    _cycle_id_var.set(cycle_id)


def get_cycle_id() -> Optional[str]:
    return _cycle_id_var.get()


def clear_cycle_id() -> None:
    _cycle_id_var.set(None)


def set_component(component: str) -> None:
    """
    Set the component name for the current context.

    Args:
        component: Component name (e.g., "exporter", "poller")
    """
    _component_var.set(component)


def get_component() -> Optional[str]:
    return _component_var.get()


class CycleFilter(logging.Filter):
    """
    Logging filter that injects cycle_id and component into log records.
    Reads from ContextVar so statements inside a poll cycle carry its ID
    without passing it around.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.cycle_id = get_cycle_id() or ""
        record.component = get_component() or ""
        return True


class CycleContext:
    """
    Context manager scoping a cycle ID to one poll cycle.
    Restores the previous ID on exit.

    Usage:
        with CycleContext() as ctx:
            logger.info("polling")  # carries ctx.cycle_id
    """

    def __init__(self, cycle_id: Optional[str] = None):
        self.cycle_id = cycle_id or generate_cycle_id()
        self._previous_id: Optional[str] = None

    def __enter__(self) -> 'CycleContext':
        self._previous_id = get_cycle_id()
        set_cycle_id(self.cycle_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._previous_id is not None:
            set_cycle_id(self._previous_id)
        else:
            clear_cycle_id()
