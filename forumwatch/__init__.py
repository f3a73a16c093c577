"""forumwatch - multi-source forum polling cache."""

__version__ = "0.1.0"
