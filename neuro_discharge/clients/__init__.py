"""
Neuro-Discharge Client Modules

HTTP clients for the external inference providers used by the augmenters.
"""

from .llm_client import (
    LLMClient,
    LLMClientError,
    parse_llm_json,
    get_client,
    configure_client,
)

__all__ = [
    "LLMClient",
    "LLMClientError",
    "parse_llm_json",
    "get_client",
    "configure_client",
]
