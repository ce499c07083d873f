"""Version information for the policycheck applications."""

POLICYCHECK_VERSION = "0.1.0"

__all__ = ["POLICYCHECK_VERSION"]
