"""Chunked, retrying transcription of uploaded session recordings."""
