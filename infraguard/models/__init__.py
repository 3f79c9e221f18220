"""
Model package initializer.

This module exists to make sure SQLAlchemy's registry is populated in any runtime
that touches the store tables (scripts, workers, tests).
"""

# Import side-effects: register ORM mappings.
from infraguard.models import resources  # noqa: F401
