"""Capital call allocation engine for pooled investment structures."""

__version__ = "0.1.0"
