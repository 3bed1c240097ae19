from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class Progress:
    """
    Monotonic "step/total" counter for multi-transaction commands.
    Advisory only.
    """

    def __init__(self, step_count: int, *, column_width: int = 40, quiet: bool = False):
        self.step = 1
        self.step_count = int(step_count)
        self.column_width = column_width
        self.quiet = quiet

    def log_step(self, msg: str) -> None:
        if not self.quiet:
            logger.info("%s/%s %s", self.step, self.step_count, msg)
        self.step += 1

    def contract_deployed(self, contract_name: str, address: str) -> None:
        self.log_step(f"{contract_name + ':':<{self.column_width}}{address}")
