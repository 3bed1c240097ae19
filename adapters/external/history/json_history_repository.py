from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from core.domain.entities.history_entity import DeploymentHistory
from core.domain.repositories.deployment_history_repository_interface import DeploymentHistoryRepository
from core.services.exceptions import CorruptHistoryError

logger = logging.getLogger(__name__)


class JsonHistoryRepository(DeploymentHistoryRepository):
    """
    Deployment history stored as one JSON document.

    The file is rewritten wholesale on every write: the new content goes to
    a temp file in the same directory which then replaces the target, so a
    crash never leaves a half-written history behind.
    """

    def __init__(self, path: str | os.PathLike):
        self._path = Path(path)

    @property
    def location(self) -> str:
        return str(self._path)

    def read(self) -> Optional[DeploymentHistory]:
        if not self._path.exists():
            return None
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CorruptHistoryError(f"Unable to read deploy history ({self._path}): {exc}", path=str(self._path)) from exc

        if not raw.strip():
            raise CorruptHistoryError(f"Deploy history file is empty ({self._path})", path=str(self._path))
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptHistoryError(
                f"Deploy history is not valid JSON ({self._path}): {exc.msg} at line {exc.lineno}",
                path=str(self._path),
            ) from exc
        if not isinstance(data, dict):
            raise CorruptHistoryError(
                f"Expected a JSON object in {self._path}, got {type(data).__name__}",
                path=str(self._path),
            )
        try:
            return DeploymentHistory.model_validate(data)
        except ValidationError as exc:
            raise CorruptHistoryError(f"Invalid deploy history ({self._path}): {exc}", path=str(self._path)) from exc

    def write(self, history: DeploymentHistory) -> None:
        payload = json.dumps(history.to_json(), indent=2, sort_keys=True) + "\n"
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self._path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise
        logger.debug("deploy history saved to %s", self._path)
