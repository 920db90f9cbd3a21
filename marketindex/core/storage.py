import os
import re
import time
import uuid
import logging
import mimetypes
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import settings
from .exceptions import InvalidOperation, NotFound, StorageError

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per request
DELETE_BATCH_SIZE = 1000


class MediaCategory(str, Enum):
    TIPS = "tips"
    SIGNALS = "signals"
    SNAPS = "snaps"
    STORIES = "stories"
    AVATARS = "avatars"


# Categories whose blobs are bound to content items
CONTENT_CATEGORIES = (
    MediaCategory.TIPS,
    MediaCategory.SIGNALS,
    MediaCategory.SNAPS,
    MediaCategory.STORIES,
)

_MEDIA_REF_RE = re.compile(
    r"^(?P<category>[a-z]+)/(?P<owner>[A-Za-z0-9_-]+)/(?P<name>[0-9]+-[0-9a-f]{8}(?:\.[a-z0-9]+)?)$"
)


def parse_media_ref(media_ref: str) -> Tuple[MediaCategory, str, str]:
    """Split a media ref into (category, owner id, object name)"""
    match = _MEDIA_REF_RE.match(media_ref or "")
    if not match:
        raise InvalidOperation(f"Malformed media reference: {media_ref!r}")
    try:
        category = MediaCategory(match.group("category"))
    except ValueError:
        raise InvalidOperation(f"Unknown media category in reference: {media_ref!r}")
    return category, match.group("owner"), match.group("name")


def build_media_key(category: MediaCategory, owner_user_id: str, content_type: Optional[str] = None) -> str:
    """Per-user, per-category key: category/owner/timestamp-suffix[.ext]"""
    extension = ""
    if content_type:
        guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
        if guessed:
            extension = guessed.lower()
    timestamp = int(time.time() * 1000)
    return f"{MediaCategory(category).value}/{owner_user_id}/{timestamp}-{uuid.uuid4().hex[:8]}{extension}"


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class MediaStorage:
    """Blob store for media: Cloudflare R2 when configured, local directory otherwise"""

    def __init__(self, client=None, bucket: Optional[str] = None, public_url: Optional[str] = None,
                 local_root: Optional[str] = None):
        self.client = client
        self.bucket = bucket or settings.R2_BUCKET_NAME
        self.public_url = settings.R2_PUBLIC_URL if public_url is None else public_url
        self.base_url = settings.BASE_URL
        self.local_root = Path(local_root or settings.UPLOAD_DIRECTORY)

        if self.client is None and all([settings.R2_ENDPOINT, settings.R2_ACCESS_KEY_ID, settings.R2_SECRET_ACCESS_KEY]):
            logger.info("Creating S3 client for R2 storage...")
            logger.info(f"  Bucket: {self.bucket}")
            logger.info(f"  Endpoint: {settings.R2_ENDPOINT}")
            logger.info(f"  Access Key ID: {settings.R2_ACCESS_KEY_ID[:5]}...")
            self.client = boto3.client(
                's3',
                endpoint_url=settings.R2_ENDPOINT,
                aws_access_key_id=settings.R2_ACCESS_KEY_ID,
                aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY
            )
        elif self.client is None:
            logger.warning(f"R2 storage not configured, using local storage at {self.local_root}")

    @property
    def backend(self) -> str:
        return "r2" if self.client else "local"

    def _local_path(self, key: str) -> Path:
        return self.local_root / key

    # Upload boundary

    def bind_media(self, data: bytes, owner_user_id: str, category: MediaCategory,
                   content_type: Optional[str] = None) -> str:
        """Store an asset in the owner's namespace and return its media ref"""
        key = build_media_key(category, owner_user_id, content_type)
        logger.info(f"Binding {len(data)} bytes to {key} ({self.backend})")
        if self.client:
            try:
                self.client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type or 'application/octet-stream'
                )
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Failed to upload {key} to R2: {e}")
                raise StorageError(f"Failed to upload media: {e}") from e
        else:
            path = self._local_path(key)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as out_file:
                out_file.write(data)
        return key

    def unbind_media(self, media_ref: str) -> bool:
        """Delete the blob behind a media ref. Deleting a missing blob succeeds."""
        parse_media_ref(media_ref)
        if self.client:
            try:
                # S3 DeleteObject returns 204 whether or not the key existed
                self.client.delete_object(Bucket=self.bucket, Key=media_ref)
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Failed to delete {media_ref} from R2: {e}")
                raise StorageError(f"Failed to delete media {media_ref}: {e}") from e
        else:
            try:
                self._local_path(media_ref).unlink()
            except FileNotFoundError:
                logger.debug(f"Media {media_ref} already absent")
            except OSError as e:
                raise StorageError(f"Failed to delete media {media_ref}: {e}") from e
        logger.info(f"Unbound media {media_ref}")
        return True

    # Reads

    def exists(self, media_ref: str) -> bool:
        parse_media_ref(media_ref)
        if not self.client:
            return self._local_path(media_ref).is_file()
        try:
            self.client.head_object(Bucket=self.bucket, Key=media_ref)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Failed to look up media {media_ref}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to look up media {media_ref}: {e}") from e

    def resolve(self, media_ref: str) -> str:
        """Dereference a media ref into a URL the client can load"""
        if not self.exists(media_ref):
            raise NotFound(f"Media {media_ref} not found")
        if self.client and self.public_url:
            return f"{self.public_url}/{media_ref}"
        return f"{self.base_url}{settings.API_V1_STR}/media/{media_ref}"

    def open_media(self, media_ref: str) -> Tuple[bytes, str]:
        """Return (content, content type) for the media proxy route"""
        parse_media_ref(media_ref)
        if self.client:
            try:
                response = self.client.get_object(Bucket=self.bucket, Key=media_ref)
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                    raise NotFound(f"Media {media_ref} not found")
                raise StorageError(f"Failed to read media {media_ref}: {e}") from e
            return response["Body"].read(), response.get("ContentType", "application/octet-stream")

        path = self._local_path(media_ref)
        if not path.is_file():
            raise NotFound(f"Media {media_ref} not found")
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        with open(path, "rb") as f:
            return f.read(), content_type

    def list_objects(self, prefix: str) -> Iterator[Tuple[str, datetime]]:
        """Yield (key, last modified in naive UTC) for every object under prefix"""
        if self.client:
            try:
                paginator = self.client.get_paginator("list_objects_v2")
                for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                    for obj in page.get("Contents", []):
                        yield obj["Key"], _naive_utc(obj["LastModified"])
            except (ClientError, BotoCoreError) as e:
                raise StorageError(f"Failed to list {prefix}: {e}") from e
            return

        if not self.local_root.exists():
            return
        for root, _dirs, files in os.walk(self.local_root):
            for name in files:
                path = Path(root) / name
                key = path.relative_to(self.local_root).as_posix()
                if key.startswith(prefix):
                    yield key, datetime.fromtimestamp(path.stat().st_mtime, timezone.utc).replace(tzinfo=None)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under prefix. Safe to repeat."""
        if not prefix or not prefix.endswith("/"):
            raise InvalidOperation("Prefix deletes must target a namespace ending in '/'")

        if not self.client:
            deleted = 0
            for key, _ in list(self.list_objects(prefix)):
                try:
                    self._local_path(key).unlink()
                    deleted += 1
                except FileNotFoundError:
                    continue
                except OSError as e:
                    raise StorageError(f"Failed to delete {key}: {e}") from e
            logger.info(f"Deleted {deleted} local objects under {prefix}")
            return deleted

        keys = [key for key, _ in self.list_objects(prefix)]
        deleted = 0
        errors = []
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as e:
                raise StorageError(f"Failed to delete objects under {prefix}: {e}") from e
            batch_errors = response.get("Errors", [])
            errors.extend(batch_errors)
            deleted += len(batch) - len(batch_errors)

        if errors:
            failed = ", ".join(err.get("Key", "?") for err in errors[:5])
            logger.error(f"Prefix delete {prefix} left {len(errors)} objects behind: {failed}")
            raise StorageError(f"{len(errors)} objects under {prefix} could not be deleted")
        logger.info(f"Deleted {deleted} objects under {prefix} from bucket '{self.bucket}'")
        return deleted


# Global instance for app-wide usage
media_storage = MediaStorage()
