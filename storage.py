"""
Blob storage for vendor media (Supabase Storage REST API).

upload_file stores bytes under a key and returns the public URL. A missing
bucket is created once and the upload retried; any other failure raises
StorageError.
"""
import logging
import os
import secrets
import time

import requests

from errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = os.getenv("STORAGE_BUCKET", "vendor-assets")
UPLOAD_TIMEOUT_SECONDS = 30


def _credentials():
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SECRET_KEY")
    if not url or not key:
        logger.error("Missing Supabase credentials in environment variables")
        raise StorageError("Storage is not configured")
    return url.rstrip("/"), key


def _headers(key: str) -> dict:
    return {"Authorization": f"Bearer {key}", "apikey": key}


def object_key(folder: str, owner_id: str) -> str:
    """e.g. packages/<owner>-<millis>-<random>"""
    return f"{folder}/{owner_id}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def public_url(bucket: str, path: str) -> str:
    base, _ = _credentials()
    return f"{base}/storage/v1/object/public/{bucket}/{path}"


def _bucket_missing(resp) -> bool:
    return resp.status_code in (400, 404) and "not found" in resp.text.lower()


def create_bucket(bucket: str):
    base, key = _credentials()
    logger.warning("Bucket '%s' not found. Attempting creation...", bucket)
    try:
        resp = requests.post(
            f"{base}/storage/v1/bucket",
            headers=_headers(key),
            json={"id": bucket, "name": bucket, "public": True},
            timeout=UPLOAD_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        raise StorageError(f"Could not create bucket {bucket}: {exc}")
    if resp.status_code >= 300 and "already exists" not in resp.text.lower():
        raise StorageError(f"Could not create bucket {bucket}: {resp.text[:200]}")


def upload_file(content: bytes, path: str, content_type: str = "application/octet-stream", bucket: str = None) -> str:
    if not content:
        raise StorageError("Invalid file object provided for upload")
    bucket = bucket or DEFAULT_BUCKET
    base, key = _credentials()
    headers = {**_headers(key), "Content-Type": content_type, "x-upsert": "true", "cache-control": "3600"}
    bucket_created = False
    while True:
        try:
            resp = requests.post(
                f"{base}/storage/v1/object/{bucket}/{path}",
                headers=headers,
                data=content,
                timeout=UPLOAD_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            logger.exception("Upload of %s to %s failed", path, bucket)
            raise StorageError(f"File upload failed: {exc}")
        if resp.status_code < 300:
            url = public_url(bucket, path)
            logger.info("Uploaded file to %s", url)
            return url
        if _bucket_missing(resp) and not bucket_created:
            create_bucket(bucket)
            bucket_created = True
            continue
        logger.error("Upload of %s to %s failed: %s %s", path, bucket, resp.status_code, resp.text[:200])
        raise StorageError(f"File upload failed with status {resp.status_code}")
