"""Apsara core — config, logging, errors."""
