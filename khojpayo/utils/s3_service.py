import io
import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image

from khojpayo import config

logger = logging.getLogger(__name__)

ITEM_FOLDER = "items"


@lru_cache(maxsize=1)
def get_s3_client():
    return boto3.client(
        service_name="s3",
        endpoint_url=f"https://{config.CLOUDFLARE_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=config.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY,
        region_name="auto",
    )


def compress_image(data: bytes, max_width=1400, quality=80):
    img = Image.open(io.BytesIO(data))
    img = img.convert("RGB")

    # Resize while keeping aspect ratio
    w, h = img.size
    if w > max_width:
        new_height = int(h * (max_width / w))
        img = img.resize((max_width, new_height), Image.LANCZOS)

    buffer = io.BytesIO()

    try:
        img.save(buffer, format="WEBP", quality=quality, method=6)
        ext = "webp"
    except (OSError, KeyError) as e:
        logger.warning("WebP encoding failed, falling back to JPEG: %s", e)

        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=quality, optimize=True)
        ext = "jpg"

    buffer.seek(0)
    return buffer, ext


def upload_to_s3(buffer: io.BytesIO, ext: str, original_name: str, folder: str = ITEM_FOLDER) -> str:
    base = os.path.splitext(os.path.basename(original_name or "upload"))[0]

    ts = int(datetime.now(timezone.utc).timestamp())
    key = f"{folder}/{base}-{ts}.{ext}"

    get_s3_client().upload_fileobj(buffer, config.R2_BUCKET, key)

    return key


def is_storage_key(url: str) -> bool:
    return not url.startswith(("http://", "https://"))


def generate_signed_url(key: str, expires_in=3600) -> Optional[str]:
    # externally hosted media is passed through untouched
    if not is_storage_key(key):
        return key

    try:
        return get_s3_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": config.R2_BUCKET, "Key": key},
            ExpiresIn=expires_in,
        )
    except (BotoCoreError, ClientError) as e:
        logger.error("Error generating signed URL for %s: %s", key, e)
        return None


def delete_s3_object(key: str):
    if not is_storage_key(key):
        return

    try:
        get_s3_client().delete_object(Bucket=config.R2_BUCKET, Key=key)
    except (BotoCoreError, ClientError) as e:
        logger.error("Error deleting S3 object %s: %s", key, e)


def media_with_urls(media: list) -> list:
    media_response = []

    for m in sorted(media, key=lambda m: m.order):
        data = m.model_dump()
        data["url"] = generate_signed_url(m.url)
        media_response.append(data)

    return media_response
