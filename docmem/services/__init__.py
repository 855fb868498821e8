"""Business logic: ingestion, retrieval, conversation context, memories and retention."""
