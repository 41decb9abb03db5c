"""
Materialize provider-hosted images into our own bucket.

Every public method returns a stable CDN URL or None. Failures are logged and never
raised: a missing asset degrades the card, it never fails an ingestion.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from botocore.exceptions import BotoCoreError, ClientError
import requests

from mango_backend.media.storage import (
    S3Config,
    apply_prefix,
    build_hosted_url,
    download_image,
    find_first_object_under_prefix,
    get_s3_client,
    guess_content_type_from_key,
    load_s3_config,
    upload_bytes_to_s3,
)

logger = logging.getLogger(__name__)

YOUTUBE_THUMBNAIL_URL = "https://img.youtube.com/vi/{video_id}/{variant}.jpg"

# YouTube serves a ~1KB grey placeholder instead of a 404 when maxres is missing.
MIN_MAXRES_THUMBNAIL_BYTES = 5000

_MATERIALIZE_ERRORS = (requests.RequestException, RuntimeError, ClientError, BotoCoreError, ValueError)


def is_jpeg(data: bytes) -> bool:
    return len(data) >= 2 and data[0] == 0xFF and data[1] == 0xD8


@dataclass
class AssetMaterializer:
    s3_client: object
    config: S3Config

    @classmethod
    def from_env(cls) -> "AssetMaterializer":
        config = load_s3_config()
        return cls(s3_client=get_s3_client(config), config=config)

    def _store(self, storage_path: str, data: bytes, content_type: str | None) -> str:
        key = apply_prefix(self.config, storage_path)
        upload_bytes_to_s3(
            self.s3_client,
            bucket=self.config.bucket,
            key=key,
            data=data,
            content_type=content_type or guess_content_type_from_key(key),
        )
        return build_hosted_url(self.config, key)

    def materialize(self, remote_url: str | None, storage_path: str) -> str | None:
        """
        Download `remote_url` and store it at `storage_path`; overwrite is idempotent.
        """

        if not remote_url:
            return None
        try:
            data, content_type = download_image(remote_url)
            return self._store(storage_path, data, content_type)
        except _MATERIALIZE_ERRORS as exc:
            logger.warning(f"Failed to materialize {remote_url} -> {storage_path}: {exc}")
            return None

    def materialize_person_photo(self, remote_url: str | None, storage_path: str, *, person_prefix: str) -> str | None:
        """
        Person photos are immutable once stored: reuse any object already under the
        person's prefix instead of downloading again.
        """

        if not remote_url:
            return None
        try:
            existing = find_first_object_under_prefix(
                self.s3_client,
                self.config.bucket,
                apply_prefix(self.config, person_prefix),
            )
        except (ClientError, BotoCoreError) as exc:
            logger.warning(f"Existence check failed for {person_prefix}: {exc}")
            existing = None
        if existing:
            return build_hosted_url(self.config, existing)
        return self.materialize(remote_url, storage_path)

    def download_video_thumbnail(self, video_id: str) -> bytes | None:
        """
        Prefer `maxresdefault`; fall back to `hqdefault` when the high-res variant is
        missing or is the undersized placeholder.
        """

        try:
            data, _ = download_image(YOUTUBE_THUMBNAIL_URL.format(video_id=video_id, variant="maxresdefault"))
            if is_jpeg(data) and len(data) > MIN_MAXRES_THUMBNAIL_BYTES:
                return data
        except _MATERIALIZE_ERRORS as exc:
            logger.debug(f"maxres thumbnail unavailable for {video_id}: {exc}")

        try:
            data, _ = download_image(YOUTUBE_THUMBNAIL_URL.format(video_id=video_id, variant="hqdefault"))
            return data
        except _MATERIALIZE_ERRORS as exc:
            logger.warning(f"Failed to download thumbnail for video {video_id}: {exc}")
            return None

    def materialize_video_thumbnail(self, video_id: str | None, storage_path: str) -> str | None:
        if not video_id:
            return None
        data = self.download_video_thumbnail(video_id)
        if data is None:
            return None
        try:
            return self._store(storage_path, data, "image/jpeg")
        except _MATERIALIZE_ERRORS as exc:
            logger.warning(f"Failed to store thumbnail for video {video_id}: {exc}")
            return None
