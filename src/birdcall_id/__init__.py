"""Bird call identification from recorded audio."""

__version__ = "0.1.0"
