from .router import ChatCompletionsDigestGenerator

__all__ = ["ChatCompletionsDigestGenerator"]
