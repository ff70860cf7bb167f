"""Run reports."""

from reporting.report import Report, Status

__all__ = ['Report', 'Status']
