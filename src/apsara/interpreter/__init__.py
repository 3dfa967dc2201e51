"""Interpreter — Python run through Gemini's hosted code execution."""
