"""Bundled jobs."""

from .simulators import failed_job_simulator, job_simulator

__all__ = ["failed_job_simulator", "job_simulator"]
