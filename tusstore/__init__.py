"""S3-backed storage and in-memory locking for tus resumable uploads."""

__version__ = "0.1.0"

__all__ = ["errors", "memorylocker", "fileinfo", "partproducer", "s3backend", "s3store"]