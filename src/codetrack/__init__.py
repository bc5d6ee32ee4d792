"""CodeTrack: log time spent on courses and projects."""

__version__ = "0.1.0"
