from __future__ import annotations

from typing import Optional

from core.domain.entities.history_entity import DeploymentHistory
from core.domain.repositories.deployment_history_repository_interface import DeploymentHistoryRepository


class InMemoryHistoryRepository(DeploymentHistoryRepository):
    """
    Keeps the last written snapshot in memory (no history path configured).
    """

    def __init__(self, initial: Optional[DeploymentHistory] = None):
        self._snapshot: Optional[dict] = initial.to_json() if initial else None
        self.writes = 0

    @property
    def location(self) -> str:
        return ":memory:"

    def read(self) -> Optional[DeploymentHistory]:
        if self._snapshot is None:
            return None
        return DeploymentHistory.model_validate(self._snapshot)

    def write(self, history: DeploymentHistory) -> None:
        self._snapshot = history.to_json()
        self.writes += 1
