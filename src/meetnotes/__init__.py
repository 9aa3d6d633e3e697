"""meetnotes: asynchronous meeting transcription and analysis."""

__version__ = "0.1.0"
