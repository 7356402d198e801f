"""Report generation."""

from .call_report import generate_call_report

__all__ = ["generate_call_report"]
