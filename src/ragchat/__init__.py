"""Local document retrieval for chat prompts."""

__version__ = "0.1.0"
