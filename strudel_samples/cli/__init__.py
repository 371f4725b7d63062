"""
Command-Line Interface Layer.

Typer commands and Rich formatting for managing the sample cache.
"""
