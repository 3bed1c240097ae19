from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from core.domain.entities.history_entity import DeploymentHistory


class DeploymentHistoryRepository(ABC):
    @abstractmethod
    def read(self) -> Optional[DeploymentHistory]:
        """
        Returns None when nothing was persisted yet.
        Raises CorruptHistoryError when stored content cannot be parsed.
        """
        raise NotImplementedError

    @abstractmethod
    def write(self, history: DeploymentHistory) -> None:
        raise NotImplementedError

    @property
    @abstractmethod
    def location(self) -> str:
        raise NotImplementedError
