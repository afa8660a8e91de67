"""Adapters: external integrations for the license tracker.

Contains:
- google_api.py      Shared Google REST transport with backoff
- audit_log.py       Cloud Logging event source
- compute_engine.py  Compute Engine inventory and resource lookups
- database.py        Report database engine and sessions
- report_store.py    SQL report tables and sink
"""

__all__: list[str] = []
