"""LLM extraction oracle: prompt contract, backends and the retrying client."""

from .backends import AnthropicBackend, OllamaBackend, OracleBackend, build_backend
from .client import ExtractionClient, ExtractionOutcome, RetryPolicy
from .decoding import decode_purchase_response

__all__ = [
    "AnthropicBackend",
    "ExtractionClient",
    "ExtractionOutcome",
    "OllamaBackend",
    "OracleBackend",
    "RetryPolicy",
    "build_backend",
    "decode_purchase_response",
]
