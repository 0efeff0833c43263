from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from common.config import CrankerConfig, EpochStorageType
from common.errors import ParseError


logger = logging.getLogger(__name__)


def _parse_epoch(content: str, *, source: str) -> int:
    text = content.strip()
    if not (text.isascii() and text.isdigit()):
        raise ParseError(f"Invalid epoch in state '{source}': {content[:50]!r}")
    return int(text)


def _check_epoch(epoch: int) -> int:
    if isinstance(epoch, bool) or not isinstance(epoch, int) or epoch < 0:
        raise ValueError(f"epoch must be a non-negative int, got {epoch!r}")
    return epoch


class EpochStore(ABC):
    """
    Persistence for the last epoch whose crank cycle completed.

    - `load()` returns the stored epoch, or None when nothing was recorded yet.
    - `save(epoch)` overwrites the stored value.

    The value is always the decimal text of one unsigned integer.
    """

    @abstractmethod
    def load(self) -> Optional[int]:
        ...

    @abstractmethod
    def save(self, epoch: int) -> None:
        ...


class MemoryEpochStore(EpochStore):
    """Keeps the epoch in process memory only; lost on restart."""

    def __init__(self) -> None:
        self._epoch: Optional[int] = None

    def load(self) -> Optional[int]:
        return self._epoch

    def save(self, epoch: int) -> None:
        self._epoch = _check_epoch(epoch)


class FileEpochStore(EpochStore):
    """
    Single-file backend; the crash-recovery mechanism.

    - Missing file -> None (fresh start), not an error.
    - Non-numeric content -> ParseError.
    - `save` replaces the file atomically and caches the value, so a `load`
      after a `save` in the same process does not touch the disk.
    """

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._path = Path(path)
        self._epoch: Optional[int] = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[int]:
        if self._epoch is not None:
            return self._epoch
        if not self._path.exists():
            logger.debug("Epoch state file %s does not exist, starting fresh", self._path)
            return None

        try:
            content = self._path.read_text(encoding="utf-8")
        except UnicodeDecodeError as ex:
            raise ParseError(f"Epoch state file {self._path} is not text") from ex
        epoch = _parse_epoch(content, source=str(self._path))
        self._epoch = epoch
        logger.info("Loaded last cranked epoch from %s: %d", self._path, epoch)
        return epoch

    def save(self, epoch: int) -> None:
        self._epoch = _check_epoch(epoch)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(f"{self._path.name}.tmp")
        tmp.write_text(str(epoch), encoding="utf-8")
        os.replace(tmp, self._path)
        logger.debug("Saved epoch %d to %s", epoch, self._path)


class S3EpochStore(EpochStore):
    """
    S3-backed variant of the file store for hosts without a persistent volume.

    - Missing object (NoSuchKey/404) -> None.
    - Non-numeric object body -> ParseError.
    - Other S3 failures propagate as botocore ClientError.
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        key: str,
        region_name: Optional[str] = None,
    ) -> None:
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._bucket = bucket
        self._key = key
        self._epoch: Optional[int] = None

    def load(self) -> Optional[int]:
        if self._epoch is not None:
            return self._epoch
        try:
            resp = self._s3.get_object(Bucket=self._bucket, Key=self._key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return None
            raise

        body = resp["Body"].read()
        try:
            content = body.decode("utf-8")
        except UnicodeDecodeError as ex:
            raise ParseError(f"Epoch state s3://{self._bucket}/{self._key} is not text") from ex
        epoch = _parse_epoch(content, source=f"s3://{self._bucket}/{self._key}")
        self._epoch = epoch
        return epoch

    def save(self, epoch: int) -> None:
        self._epoch = _check_epoch(epoch)
        self._s3.put_object(
            Bucket=self._bucket,
            Key=self._key,
            Body=str(epoch).encode("utf-8"),
            ContentType="text/plain",
        )


def build_epoch_store(config: CrankerConfig) -> EpochStore:
    """Pick the backend named by `config.epoch_storage_type`."""
    if config.epoch_storage_type is EpochStorageType.MEMORY:
        return MemoryEpochStore()
    if config.epoch_storage_type is EpochStorageType.S3:
        return S3EpochStore(bucket=config.epoch_state_bucket or "", key=config.epoch_state_key)
    return FileEpochStore(config.epoch_state_file)


__all__ = [
    "EpochStore",
    "FileEpochStore",
    "MemoryEpochStore",
    "S3EpochStore",
    "build_epoch_store",
]
