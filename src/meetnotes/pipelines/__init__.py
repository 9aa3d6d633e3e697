"""Meeting processing pipeline: transcription, analysis and orchestration."""
