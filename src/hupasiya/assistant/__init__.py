"""Assistant adapters.

Provides an OpenAI-compatible HTTP assistant that turns review comments
into ShepherdAnalysis objects and unified diffs.
"""

from hupasiya.assistant.client import OpenAIAssistant

__all__ = ["OpenAIAssistant"]
