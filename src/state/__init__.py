"""
Epoch state persistence.

The cranker records the last epoch it cranked so that a restart does not
crank the same epoch twice. Backends: memory, a local file, or an S3 object.
"""

from .epoch_store import EpochStore, FileEpochStore, MemoryEpochStore, S3EpochStore, build_epoch_store

__all__ = ["EpochStore", "FileEpochStore", "MemoryEpochStore", "S3EpochStore", "build_epoch_store"]
