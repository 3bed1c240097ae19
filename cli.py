import logging
import sys
from typing import Optional, Sequence

from adapters.entry.cli.transfer_manager_cli import run
from config import get_settings


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(
        level=get_settings().LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    return run(argv)


if __name__ == "__main__":
    sys.exit(main())
