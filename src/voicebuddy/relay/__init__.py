"""Streaming relay between chat clients and a hosted completion provider.

The relay prepends a fixed system prompt to the caller's conversation and
pipes provider token deltas back as a plain-text stream.
"""

__all__ = []
