"""photobatch: batch AI image transformation engine."""

__version__ = "0.1.0"
