"""Core types and configuration shared by the engine and the CLI."""
