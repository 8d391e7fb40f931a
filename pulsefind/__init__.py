"""Find published songs that use an uploaded beat."""

__version__ = "0.1.0"
