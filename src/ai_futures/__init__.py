"""AI Futures - LLM decision core for perpetual futures trading."""

__version__ = "0.1.0"
