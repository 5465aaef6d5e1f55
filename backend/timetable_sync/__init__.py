"""Cross-referenced school timetable with real-time multi-device replication."""

__version__ = "1.0.0"
