"""Gateway diagnostics: connectivity, throughput, CPU and memory monitoring with rotating logs."""

__version__ = "0.1.0"
__all__ = ["rotating_log", "sysstats", "sta", "monitor"]