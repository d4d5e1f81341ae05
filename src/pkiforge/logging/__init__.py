"""Logging subsystem for pkiforge.

Public API::

    from pkiforge.logging import configure_logging

    configure_logging(settings.logging)
"""

from pkiforge.logging.context import operation_context
from pkiforge.logging.setup import configure_logging

__all__ = ["configure_logging", "operation_context"]
