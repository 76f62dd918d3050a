"""Watch party backend: shared playback, chat and voice signaling rooms."""

__version__ = "0.1.0"
