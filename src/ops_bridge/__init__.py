"""Ops Bridge - Migrate Kubernetes resources and MySQL data between systems."""

import logging
import warnings

__version__ = "0.1.0"
__author__ = "Ops Bridge Team"
__license__ = "Apache-2.0"

# Suppress verbose third-party library logging
logging.getLogger("pymysql").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

warnings.filterwarnings("ignore", category=DeprecationWarning, module="pymysql")
