"""Orchestrator package - coordinates multipart upload attempts."""
from .core import UploadOrchestrator, match_targets
from .part_uploader import PartUploader
from .progress import ProgressAggregator

__all__ = ["UploadOrchestrator", "PartUploader", "ProgressAggregator", "match_targets"]
