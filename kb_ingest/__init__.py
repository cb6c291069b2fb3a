"""Document ingestion jobs for a retrieval knowledge base."""
__version__ = "0.1.0"
