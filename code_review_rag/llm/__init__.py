from .client import CloudLLMClient, LLMClient, MockLLMClient, OllamaLLMClient, build_llm_client

__all__ = ["CloudLLMClient", "LLMClient", "MockLLMClient", "OllamaLLMClient", "build_llm_client"]
