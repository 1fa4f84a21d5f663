#!/usr/bin/env python
import logging

__version__ = "0.1.0"

from .client import Client

# Silence notification of no default logging handler
log = logging.getLogger("calendula")


class NullHandler(logging.Handler):
    def emit(self, record) -> None:
        pass


log.addHandler(NullHandler())

__all__ = ["__version__", "Client"]
