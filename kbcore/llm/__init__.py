"""Model client helpers."""

from .clients import ChatModel, classify_openai_error

__all__ = ["ChatModel", "classify_openai_error"]
