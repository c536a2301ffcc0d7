"""
Model provider adapters.

    from drillrag.llm import OpenAIEmbeddingProvider, OpenAICompletionProvider

    embedder  = OpenAIEmbeddingProvider(context)
    vector    = await embedder.embed("motor stator fit")
    completer = OpenAICompletionProvider()
    answer    = await completer.complete(system_prompt, user_prompt)
"""

from drillrag.llm.providers import (
    Completion,
    CompletionProvider,
    EmbeddingProvider,
    OpenAICompletionProvider,
    OpenAIEmbeddingProvider,
)

__all__ = [
    "Completion",
    "CompletionProvider",
    "EmbeddingProvider",
    "OpenAICompletionProvider",
    "OpenAIEmbeddingProvider",
]
