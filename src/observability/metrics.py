"""Prometheus metrics for the RAG pipeline.

Exposed through the ``/metrics`` endpoint mounted in ``src.api.main``.
"""

from prometheus_client import Counter, Gauge, Histogram

DOCUMENTS_INGESTED = Counter(
    "rag_documents_ingested_total",
    "Documents ingested",
    ["source_type", "status"],  # status: success, rejected, aborted
)

CHUNKS_GENERATED = Counter(
    "rag_chunks_generated_total",
    "Chunks generated by the chunker",
)

STAGE_DURATION = Histogram(
    "rag_stage_duration_seconds",
    "Duration of each ingest stage",
    ["stage"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

SEARCHES_TOTAL = Counter(
    "rag_searches_total",
    "Searches performed",
    ["outcome"],  # outcome: results, empty, error
)

SEARCH_LATENCY = Histogram(
    "rag_search_duration_seconds",
    "Search latency in seconds",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

EMBEDDING_FALLBACKS = Counter(
    "rag_embedding_fallbacks_total",
    "Times the neural embedding backend was unavailable and TF-IDF was used",
)

EMBEDDING_CACHE_HITS = Counter(
    "rag_embedding_cache_hits_total",
    "Embedding cache hits",
)

EMBEDDING_CACHE_MISSES = Counter(
    "rag_embedding_cache_misses_total",
    "Embedding cache misses",
)

ACTIVE_INGESTS = Gauge(
    "rag_active_ingests",
    "Document ingests currently running",
)
