"""Index Restore - Restore exported Elasticsearch indices from S3 archives."""

__version__ = "0.1.0"
