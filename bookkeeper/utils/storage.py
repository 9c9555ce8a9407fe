"""Off-site copies of backup archives in a Backblaze B2 bucket (S3 API)."""
from io import BytesIO
from typing import Optional, Tuple
from urllib.parse import urlparse
from uuid import uuid4

import boto3
from botocore.exceptions import ClientError
from flask import current_app

_B2_KEYS = ("B2_BUCKET_NAME", "B2_PUBLIC_URL", "B2_ENDPOINT", "B2_KEY_ID", "B2_APPLICATION_KEY")


def storage_configured() -> bool:
    return all(current_app.config.get(k) for k in _B2_KEYS)


def _bucket_and_base() -> Tuple[Optional[str], str]:
    cfg = current_app.config
    return cfg.get("B2_BUCKET_NAME"), (cfg.get("B2_PUBLIC_URL") or "").rstrip("/")


def get_s3_client():
    cfg = current_app.config
    if not all(cfg.get(k) for k in ("B2_ENDPOINT", "B2_KEY_ID", "B2_APPLICATION_KEY")):
        raise RuntimeError("Backblaze B2 credentials are not fully configured.")
    return boto3.client(
        "s3",
        endpoint_url=cfg["B2_ENDPOINT"],
        aws_access_key_id=cfg["B2_KEY_ID"],
        aws_secret_access_key=cfg["B2_APPLICATION_KEY"],
    )


def upload_backup_archive(payload: bytes, company_id: int) -> str:
    """Store a JSON backup under ``backups/<company_id>/`` and return its public URL."""
    bucket, public_base = _bucket_and_base()
    if not bucket or not public_base:
        raise RuntimeError("Backblaze B2 bucket or public URL is not configured.")
    key = f"backups/{company_id}/{uuid4().hex}.json"
    client = get_s3_client()
    try:
        client.upload_fileobj(BytesIO(payload), bucket, key, ExtraArgs={"ContentType": "application/json"})
    except ClientError as exc:
        current_app.logger.exception("Failed to upload backup to B2: %s", exc)
        raise
    current_app.logger.info("Backup archive stored at %s (%s bytes)", key, len(payload))
    return f"{public_base}/{key}"


def _object_key(url: str, public_base: str) -> str:
    if public_base and url.startswith(public_base):
        return url[len(public_base):].lstrip("/")
    return urlparse(url).path.lstrip("/")


def delete_backup_archive(url: Optional[str]) -> bool:
    """Remove an archive previously returned by ``upload_backup_archive``."""
    bucket, public_base = _bucket_and_base()
    if not url or not bucket:
        return False
    key = _object_key(url, public_base)
    if not key:
        return False
    try:
        get_s3_client().delete_object(Bucket=bucket, Key=key)
    except (ClientError, RuntimeError):
        current_app.logger.exception("Failed to delete backup archive %s", key)
        return False
    return True
