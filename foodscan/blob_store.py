"""
Blob storage for uploaded scan files.

Two backends are provided: ``LocalBlobStore`` keeps files in the uploads
directory (development) and ``S3BlobStore`` keeps them in an S3 bucket
(production). Both generate their own object names, check the content type
before touching storage, and enforce the size cap while streaming so an
oversized upload is never buffered in full.
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import tempfile
import time
from pathlib import Path
from typing import IO, Any, Dict, Optional, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from foodscan.errors import InternalError, InvalidInput, NotFound, PayloadTooLarge, UnsupportedType
from foodscan.settings import ALLOWED_CONTENT_TYPES, MAX_UPLOAD_BYTES

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

EXTENSION_BY_CONTENT_TYPE = {
  "image/jpeg": ".jpg",
  "image/png": ".png",
  "image/webp": ".webp",
  "application/pdf": ".pdf",
}

BLOB_NAME_PATTERN = re.compile(r"^scan-\d+-[0-9a-f]{16}\.(jpg|png|webp|pdf)$")


def generate_blob_name(content_type: str) -> str:
  """
  Return a fresh blob name for the given content type.

  The nanosecond clock plus 64 random bits keeps names unique across
  concurrent writers; the client's file name never takes part.
  """
  extension = EXTENSION_BY_CONTENT_TYPE[content_type]
  return f"scan-{time.time_ns()}-{secrets.token_hex(8)}{extension}"


def is_valid_blob_name(blob_name: str) -> bool:
  return bool(BLOB_NAME_PATTERN.match(blob_name or ""))


def _check_upload(content_type: str, declared_size: Optional[int], max_bytes: int) -> None:
  if content_type not in ALLOWED_CONTENT_TYPES:
    raise UnsupportedType()
  if declared_size is not None and declared_size > max_bytes:
    raise PayloadTooLarge()


def _copy_bounded(source: IO[bytes], destination: IO[bytes], max_bytes: int) -> int:
  """
  Copy ``source`` into ``destination`` chunk by chunk, stopping past ``max_bytes``.

  An empty stream is rejected; there is nothing to analyse.
  """
  written = 0
  while True:
    chunk = source.read(CHUNK_SIZE)
    if not chunk:
      if written == 0:
        raise InvalidInput("Empty file received.")
      return written
    written += len(chunk)
    if written > max_bytes:
      raise PayloadTooLarge()
    destination.write(chunk)


class BlobStore:
  """Interface shared by the storage backends."""

  def __init__(self, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    self.max_bytes = max_bytes

  def accept(self, stream: IO[bytes], content_type: str, declared_size: Optional[int] = None) -> str:
    raise NotImplementedError

  def read(self, blob_name: str) -> bytes:
    raise NotImplementedError

  def delete(self, blob_name: str) -> None:
    raise NotImplementedError

  def exists(self, blob_name: str) -> bool:
    raise NotImplementedError

  def access_path(self, blob_name: str) -> str:
    raise NotImplementedError


class LocalBlobStore(BlobStore):
  """Persist uploaded bytes to the local uploads directory."""

  def __init__(self, root: Union[str, Path], max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    super().__init__(max_bytes)
    self.root = Path(root).resolve()
    self.root.mkdir(parents=True, exist_ok=True)

  def _path(self, blob_name: str) -> Path:
    if not is_valid_blob_name(blob_name):
      raise NotFound("File not found.")
    return self.root / blob_name

  def accept(self, stream: IO[bytes], content_type: str, declared_size: Optional[int] = None) -> str:
    _check_upload(content_type, declared_size, self.max_bytes)
    blob_name = generate_blob_name(content_type)
    final_path = self.root / blob_name
    partial_path = self.root / f"{blob_name}.part"
    destination = open(partial_path, "xb")
    try:
      with destination:
        size = _copy_bounded(stream, destination, self.max_bytes)
      os.replace(partial_path, final_path)
    except BaseException:
      partial_path.unlink(missing_ok=True)
      raise
    logger.debug("Stored blob %s (%d bytes)", blob_name, size)
    return blob_name

  def read(self, blob_name: str) -> bytes:
    try:
      return self._path(blob_name).read_bytes()
    except FileNotFoundError as exc:
      raise NotFound("File not found.") from exc

  def delete(self, blob_name: str) -> None:
    if not is_valid_blob_name(blob_name):
      return
    (self.root / blob_name).unlink(missing_ok=True)
    logger.debug("Deleted blob %s", blob_name)

  def exists(self, blob_name: str) -> bool:
    return is_valid_blob_name(blob_name) and (self.root / blob_name).is_file()

  def access_path(self, blob_name: str) -> str:
    return f"/uploads/{blob_name}"


def build_s3_client(region: Optional[str] = None):
  """Create an S3 client using environment credentials."""
  kwargs: Dict[str, Any] = {
    "service_name": "s3",
    "region_name": region,
  }
  if os.environ.get("AWS_ACCESS_KEY_ID") and os.environ.get("AWS_SECRET_ACCESS_KEY"):
    kwargs.update(
      aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID"),
      aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY"),
    )
  return boto3.client(**kwargs)


class S3BlobStore(BlobStore):
  """Persist uploaded bytes as objects in an S3 bucket."""

  def __init__(
    self,
    s3_client,
    bucket: str,
    *,
    acl: Optional[str] = None,
    max_bytes: int = MAX_UPLOAD_BYTES,
  ) -> None:
    super().__init__(max_bytes)
    if not bucket:
      raise RuntimeError("AWS_BUCKET_NAME must be set when STORAGE_BACKEND=s3.")
    self.s3 = s3_client
    self.bucket = bucket
    self.acl = acl

  def accept(self, stream: IO[bytes], content_type: str, declared_size: Optional[int] = None) -> str:
    _check_upload(content_type, declared_size, self.max_bytes)
    blob_name = generate_blob_name(content_type)
    # Spool through a bounded temp file so the size check happens before upload.
    with tempfile.SpooledTemporaryFile(max_size=1024 * 1024) as spool:
      _copy_bounded(stream, spool, self.max_bytes)
      spool.seek(0)
      extra: Dict[str, Any] = {"ContentType": content_type}
      if self.acl:
        extra["ACL"] = self.acl
      try:
        self.s3.put_object(Bucket=self.bucket, Key=blob_name, Body=spool, **extra)
      except (BotoCoreError, ClientError) as exc:
        logger.exception("S3 upload failed for %s", blob_name)
        raise InternalError("Cloud upload failed.") from exc
    logger.debug("Stored blob %s in bucket %s", blob_name, self.bucket)
    return blob_name

  def read(self, blob_name: str) -> bytes:
    try:
      response = self.s3.get_object(Bucket=self.bucket, Key=blob_name)
    except ClientError as exc:
      if exc.response["Error"]["Code"] in ("NoSuchKey", "404"):
        raise NotFound("File not found.") from exc
      raise InternalError("Cloud download failed.") from exc
    body = response["Body"]
    try:
      return body.read()
    finally:
      body.close()

  def delete(self, blob_name: str) -> None:
    # S3 DeleteObject already succeeds for missing keys.
    try:
      self.s3.delete_object(Bucket=self.bucket, Key=blob_name)
    except (BotoCoreError, ClientError) as exc:
      raise InternalError("Cloud delete failed.") from exc

  def exists(self, blob_name: str) -> bool:
    try:
      self.s3.head_object(Bucket=self.bucket, Key=blob_name)
    except ClientError as exc:
      if exc.response["Error"]["Code"] in ("404", "NoSuchKey", "NotFound"):
        return False
      raise
    return True

  def access_path(self, blob_name: str) -> str:
    return f"https://{self.bucket}.s3.amazonaws.com/{blob_name}"


__all__ = [
  "BlobStore",
  "LocalBlobStore",
  "S3BlobStore",
  "build_s3_client",
  "generate_blob_name",
  "is_valid_blob_name",
]
