"""hexstash: hex grid editor with chunked key-value persistence."""

__version__ = "0.1.0"
