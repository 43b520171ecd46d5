"""
Audio module
Handles recording transcription
"""

from .transcriber import TranscriptionWorker, WhisperTranscriber
