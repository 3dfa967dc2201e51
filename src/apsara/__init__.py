"""Apsara — Gemini Live relay with canvas, interpreter and text chat backends."""

__version__ = "0.3.0"
