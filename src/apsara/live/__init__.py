"""Gemini Live — session config, upstream adapter and its event stream."""
