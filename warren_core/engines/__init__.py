from .reporting import DiagnosticReporter

__all__ = [
    "DiagnosticReporter",
]
