"""StudyMap: hierarchy and layout engine for study mind maps."""

__version__ = "1.0.0"
