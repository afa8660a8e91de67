"""License tracker: reconstructs VM placement history from audit logs."""

__version__ = "1.0.0"
