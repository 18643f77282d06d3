"""
Remote backup storage for the ledger (best effort).
"""

from .base import RemoteBackup, RemoteUploader
from .memory import InMemoryUploader
from .s3 import S3Uploader

__all__ = ["InMemoryUploader", "RemoteBackup", "RemoteUploader", "S3Uploader"]
