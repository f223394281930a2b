"""VoiceBuddy: a voice-enabled chat companion with a streaming model relay."""

__version__ = "0.1.0"
