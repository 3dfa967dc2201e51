"""Interactions — stateful text chat over the Gemini Interactions API."""
