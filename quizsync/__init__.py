"""quizsync: offline-first progress tracking and cloud sync for quiz apps."""

__version__ = "0.1.0"
