"""Stack Bridge - Resumable migration of an infrastructure-as-code stack."""

import logging
import warnings

__version__ = "0.1.0"
__author__ = "Stack Bridge Team"
__license__ = "Apache-2.0"

# Suppress verbose third-party library logging
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)

warnings.filterwarnings("ignore", category=DeprecationWarning, module="networkx")
