"""Streaming chat normalization across LLM provider wire formats."""

__version__ = "0.1.0"
