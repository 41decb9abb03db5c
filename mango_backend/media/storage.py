from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass

import boto3
import requests

_DEFAULT_HEADERS = {
    "accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
    "accept-language": "en-US,en;q=0.9",
    "user-agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
}

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


@dataclass(frozen=True)
class S3Config:
    bucket: str
    region: str
    cdn_base_url: str
    prefix: str
    profile_name: str | None


def _require_env(name: str) -> str:
    value = (os.getenv(name) or "").strip()
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _require_region() -> str:
    region = (os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or "").strip()
    if not region:
        raise RuntimeError("Missing required environment variable: AWS_REGION (or AWS_DEFAULT_REGION)")
    return region


def _validate_cdn_base_url(value: str) -> str:
    base = (value or "").strip()
    if not base:
        raise RuntimeError("Missing required environment variable: AWS_CDN_BASE_URL")
    if not base.startswith("https://"):
        raise RuntimeError("AWS_CDN_BASE_URL must start with https://")
    if "dxxxx" in base.lower():
        raise RuntimeError("AWS_CDN_BASE_URL contains placeholder 'dxxxx'; set the real CDN domain")
    return base.rstrip("/")


def load_s3_config() -> S3Config:
    bucket = _require_env("AWS_S3_BUCKET")
    region = _require_region()
    cdn_base_url = _validate_cdn_base_url(_require_env("AWS_CDN_BASE_URL"))
    prefix = (os.getenv("AWS_S3_PREFIX") or "").strip().strip("/")
    profile_name = (os.getenv("AWS_PROFILE") or os.getenv("AWS_DEFAULT_PROFILE") or "").strip() or None
    return S3Config(
        bucket=bucket,
        region=region,
        cdn_base_url=cdn_base_url,
        prefix=prefix,
        profile_name=profile_name,
    )


def _build_boto3_session(config: S3Config) -> boto3.Session:
    if config.profile_name:
        return boto3.Session(profile_name=config.profile_name, region_name=config.region)
    return boto3.Session(region_name=config.region)


def get_s3_client(config: S3Config):
    access_key = (os.getenv("AWS_ACCESS_KEY_ID") or "").strip()
    secret_key = (os.getenv("AWS_SECRET_ACCESS_KEY") or "").strip()

    session = _build_boto3_session(config)
    if config.profile_name:
        return session.client("s3", region_name=config.region)
    if access_key and secret_key:
        return session.client(
            "s3",
            region_name=config.region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
        )
    return session.client("s3", region_name=config.region)


def apply_prefix(config: S3Config, key: str) -> str:
    key = str(key or "").strip().lstrip("/")
    if not key:
        raise RuntimeError("storage key is required")
    return f"{config.prefix}/{key}" if config.prefix else key


def build_hosted_url(config: S3Config, hosted_key: str) -> str:
    key = str(hosted_key or "").strip()
    if not key:
        raise RuntimeError("hosted_key is required to build hosted_url")
    return f"{config.cdn_base_url}/{key.lstrip('/')}"


def guess_content_type_from_key(key: str) -> str:
    lower = key.lower()
    if lower.endswith(".png"):
        return "image/png"
    if lower.endswith(".webp"):
        return "image/webp"
    return "image/jpeg"


_SEGMENT_RE = re.compile(r"[^a-z0-9\-_.]")


def _sanitize_path_segment(name: str) -> str:
    """Sanitize a value for use as one S3 path segment."""
    slug = _SEGMENT_RE.sub("", str(name or "").strip().lower().replace(" ", "-"))
    return slug.strip("-.") or "unknown"


def ext_from_url(url: str, default: str = ".jpg") -> str:
    match = re.search(r"(\.[A-Za-z0-9]{2,5})(?:\?.*)?$", url or "")
    if not match:
        return default
    return match.group(1).lower()


def build_movie_image_s3_key(tmdb_id: str | int, kind: str, name: str, ext: str) -> str:
    """
    Path: images/movies/{tmdb_id}/{kind}/{name}{ext}

    Keys are derived from the movie id and the provider asset name, so re-ingesting an
    unchanged movie overwrites the same objects instead of accumulating new ones.
    """

    segments = [
        "images",
        "movies",
        _sanitize_path_segment(str(tmdb_id)),
        _sanitize_path_segment(kind),
        f"{_sanitize_path_segment(name)}{ext}",
    ]
    return "/".join(segments)


def get_person_s3_prefix(person_id: str | int) -> str:
    return f"images/people/{_sanitize_path_segment(str(person_id))}/profile/"


def build_person_photo_s3_key(person_id: str | int, size: str, ext: str) -> str:
    """
    Path: images/people/{tmdb_person_id}/profile/{size}{ext}
    """

    return f"{get_person_s3_prefix(person_id)}{_sanitize_path_segment(size)}{ext}"


def build_trailer_thumbnail_s3_key(tmdb_id: str | int, video_id: str) -> str:
    return build_movie_image_s3_key(tmdb_id, "trailers", video_id, ".jpg")


def download_image(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    timeout: tuple[float, float] = (5, 30),
) -> tuple[bytes, str | None]:
    merged = {**_DEFAULT_HEADERS, **(headers or {})}
    resp = requests.get(url, headers=merged, timeout=timeout, stream=True)
    resp.raise_for_status()
    content_type = resp.headers.get("Content-Type")
    data = resp.content or b""
    if not data:
        raise RuntimeError("Empty image response")
    return data, content_type


def upload_bytes_to_s3(
    s3_client,
    *,
    bucket: str,
    key: str,
    data: bytes,
    content_type: str,
) -> None:
    s3_client.put_object(
        Bucket=bucket,
        Key=key,
        Body=data,
        ContentType=content_type,
        CacheControl=IMMUTABLE_CACHE_CONTROL,
    )


def find_first_object_under_prefix(s3_client, bucket: str, prefix: str) -> str | None:
    """
    Return one object key stored under `prefix`, or None when the prefix is empty.
    """

    response = s3_client.list_objects_v2(Bucket=bucket, Prefix=prefix, MaxKeys=1)
    for obj in response.get("Contents", []) or []:
        key = obj.get("Key")
        if key:
            return key
    return None
