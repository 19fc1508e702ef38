"""Application package containing the API, configuration, data access, ingestion,
retrieval/generation pipelines, and supporting utilities.

Submodules overview:
- main: FastAPI application bootstrap and routes.
- deps: Cached service factories used as FastAPI dependencies.
- config: Application settings and environment variable loading.
- logging_config: Root logging setup (plain or JSON).
- errors: Exception hierarchy.
- db: Database engine/session management helpers.
- models: ORM models (points, pages, conversations, messages).
- schemas: Pydantic request/response models for API contracts.
- chunking: Heading-aware grouping, splitting and merging of page lines.
- indexer: Fingerprinting and writing chunks into the vector store.
- vectorstore: pgvector and in-memory vector store backends.
- pages: Page table access and page administration.
- retrieval: Vector retrieval and prompt-context assembly.
- conversations: Conversation/message stores.
- memory: Rolling summarization and the active prompt window.
- qa: Answer orchestration with streamed generation.
- generation: OpenAI chat helpers (streaming, classification, summaries, titles).
- embedding: Embedding utilities and providers.
- cache: Redis client and embedding cache.
- quota: Per-user daily message quota.
- ingestion: Crawler, scraper, ingestor and the batch pipeline.
- obs: Observability utilities (tracing/spans).
- utils: URL normalization and vector math helpers.
"""
