"""
Code-aware retrieval pipeline for LLM code review.

Turns a source repository into a semantically ranked index and builds
token-bounded review prompts from it:

- chunking: language-aware splitting of source files into code chunks
- embeddings: embedding providers plus a bounded LRU/TTL embedding cache
- store: vector-store backends (Qdrant, in-memory) and payload schemas
- retrieval: filter building, hybrid scoring and the retrieval orchestrator
- prompt: token budgeting and prompt composition
- indexing: batched, cancellable and incremental repository indexing
- llm: review generation through Anthropic, OpenAI-compatible or Ollama backends
- pipeline: wires the above into index → retrieve → compose → generate
"""

__version__ = "0.3.0"
