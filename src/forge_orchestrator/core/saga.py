"""Ordered compensating actions for multi-step store writes.

The store has no multi-record transactions, so operations that create
several related records register an undo step after each successful write.
On failure the steps run newest first; a failing step is logged and the
remaining steps still run.
"""

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class Saga:
    """Stack of compensating actions.

    Example:
        >>> with Saga("register agent") as saga:
        ...     agent = store.create(entity)
        ...     saga.add_compensation("delete agent", lambda: store.delete(agent.id))
        ...     channel = store.create(channel)

    Leaving the block with an exception runs the compensations and lets the
    exception propagate. A clean exit discards them.
    """

    def __init__(self, name: str = "operation"):
        self.name = name
        self._compensations: list[tuple[str, Callable[[], object]]] = []

    def add_compensation(self, description: str, action: Callable[[], object]) -> None:
        self._compensations.append((description, action))

    def compensate(self) -> list[str]:
        """Run compensations newest first.

        Returns:
            Descriptions of the compensations that failed.
        """
        failed = []
        while self._compensations:
            description, action = self._compensations.pop()
            try:
                action()
                logger.debug(f"{self.name}: compensated '{description}'")
            except Exception as e:
                logger.warning(f"{self.name}: compensation '{description}' failed: {e}")
                failed.append(description)
        return failed

    def commit(self) -> None:
        self._compensations.clear()

    def __len__(self) -> int:
        return len(self._compensations)

    def __enter__(self) -> "Saga":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            logger.warning(f"{self.name} failed, rolling back: {exc}")
            self.compensate()
        else:
            self.commit()
        return False
