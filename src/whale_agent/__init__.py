"""
Whale Deep-Dive Agent package initializer.

This package exposes ``submit_job`` and ``get_job_status`` for external
usage.  Other internal modules (e.g. API, job store) should be imported
explicitly from their respective files.
"""

from .orchestrator import get_job_status, submit_job  # noqa: F401

__all__ = ["get_job_status", "submit_job"]
