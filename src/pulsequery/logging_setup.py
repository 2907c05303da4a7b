"""Logging setup.

rich's handler for interactive use, a plain formatter otherwise (containers,
log shippers). modules just do logging.getLogger(__name__) and never touch
handlers themselves.
"""

import logging
import sys

from rich.logging import RichHandler

from pulsequery.config import Settings

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def configure_logging(settings: Settings) -> None:
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())

    # configure_logging can run more than once (cli + api in tests)
    for handler in list(root.handlers):
        if getattr(handler, "_pulsequery", False):
            root.removeHandler(handler)

    if sys.stderr.isatty():
        handler: logging.Handler = RichHandler(rich_tracebacks=True, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    handler._pulsequery = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # sqlglot warns about every dialect quirk it normalizes
    logging.getLogger("sqlglot").setLevel(logging.WARNING)
