"""docmem: document and memory retrieval engine."""

__version__ = "0.1.0"
