"""Command line and web surfaces for policy reconciliation."""

from apps.policycheck.version import POLICYCHECK_VERSION

__version__ = POLICYCHECK_VERSION

__all__ = ["__version__"]
