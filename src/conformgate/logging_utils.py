from __future__ import annotations

import logging
import sys


def configure_logging(*, verbose: bool, quiet: bool) -> None:
    """
    Route ConformGate logs to stderr at the level picked on the command line.

    Reports own stdout, so JSON and Markdown output stay machine-readable.
    `--quiet` keeps warnings only, `--verbose` adds DEBUG records with the
    emitting logger's name. The CLI rejects the two flags together.
    """

    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    fmt = "ConformGate [%(levelname)s] %(name)s: %(message)s" if verbose else "ConformGate: %(message)s"
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr, force=True)
