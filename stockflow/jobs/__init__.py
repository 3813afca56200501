"""
Background Jobs Module

Handles scheduled tasks for:
- Automated reorder cycles
- Supplier lead-time recalibration
"""

from stockflow.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from stockflow.jobs.auto_reorder import run_auto_reorder_job, run_lead_time_refresh_job

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "run_auto_reorder_job",
    "run_lead_time_refresh_job",
]
