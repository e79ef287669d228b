"""Cloudflare R2 object storage through its S3-compatible API."""
import logging
from functools import lru_cache

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from carbly.core.config import settings
from carbly.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_client():
    return boto3.client(
        "s3",
        endpoint_url=settings.R2_ENDPOINT_URL,
        aws_access_key_id=settings.R2_ACCESS_KEY_ID,
        aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
        region_name="auto",
    )


def public_url(path: str) -> str:
    return f"{settings.R2_PUBLIC_URL.rstrip('/')}/{path}"


def contract_path(team_id, reservation_id, signed: bool = False) -> str:
    suffix = "-signed" if signed else ""
    return f"contracts/{team_id}/{reservation_id}{suffix}.pdf"


def upload_file(path: str, body: bytes, content_type: str = "application/pdf") -> str:
    """Uploads an object and returns its public URL."""
    try:
        get_client().put_object(Bucket=settings.R2_BUCKET_NAME, Key=path, Body=body, ContentType=content_type)
    except (BotoCoreError, ClientError) as e:
        logger.error("R2 upload of %s failed: %s", path, e)
        raise ExternalServiceError("Échec de l'envoi du fichier") from e
    return public_url(path)


def download_file(path: str) -> bytes:
    try:
        response = get_client().get_object(Bucket=settings.R2_BUCKET_NAME, Key=path)
        return response["Body"].read()
    except (BotoCoreError, ClientError) as e:
        logger.error("R2 download of %s failed: %s", path, e)
        raise ExternalServiceError("Fichier introuvable dans le stockage") from e


def get_presigned_download_url(path: str, expires_in: int = 3600) -> str:
    return get_client().generate_presigned_url(
        "get_object",
        Params={"Bucket": settings.R2_BUCKET_NAME, "Key": path},
        ExpiresIn=expires_in,
    )

