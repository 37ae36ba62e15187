"""Approval, month-close and audit core for company financial documents."""

__version__ = "0.1.0"
