"""Entry point for `python -m syncthing_status` and the `syncthing-status` console script."""

import asyncio
import logging
import sys

from syncthing_status.app import EXIT_CONFIG, run
from syncthing_status.config import load_settings


def main() -> None:
    try:
        settings = load_settings()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_CONFIG)

    # stdout belongs to the status-bar host; diagnostics go to stderr.
    logging.basicConfig(
        level=settings.log_level,
        stream=sys.stderr,
        format="%(name)s %(levelname)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    sys.exit(asyncio.run(run(settings)))


if __name__ == "__main__":
    main()
