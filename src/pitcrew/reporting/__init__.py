"""Reporting collaborators consuming results and the run summary."""

from pitcrew.reporting.junit import write_junit, write_meta

__all__ = ["write_junit", "write_meta"]
