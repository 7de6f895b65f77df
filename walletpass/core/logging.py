import sys
import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure root logging once at startup.

    Handlers are only installed when the root logger has none, so calling
    this again (e.g. from tests creating several apps) is harmless.
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=getattr(logging, level.upper(), logging.INFO),
            format=LOG_FORMAT,
            handlers=[
                logging.StreamHandler(sys.stdout)
            ]
        )
    else:
        root.setLevel(getattr(logging, level.upper(), logging.INFO))

    return logging.getLogger("walletpass")
