"""Yousign API v3 client (signature requests, signers, signed document download)."""
import logging
from typing import Any, Dict, Optional

import httpx

from carbly.core.config import settings
from carbly.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

TIMEOUT_SECONDS = 30.0

# Signature box position on page 1, in Yousign's top-left coordinate system
SIGNATURE_FIELD = {"page": 1, "x": 100, "y": 650, "width": 150, "height": 50}


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=TIMEOUT_SECONDS)


def _headers() -> Dict[str, str]:
    if not settings.YOUSIGN_API_KEY:
        raise ExternalServiceError("Yousign API key not configured")
    return {"Authorization": f"Bearer {settings.YOUSIGN_API_KEY}"}


def _raise_for_status(response: httpx.Response, step: str) -> None:
    if response.is_error:
        logger.error("Yousign %s failed (%s): %s", step, response.status_code, response.text)
        raise ExternalServiceError(f"Yousign: {step} failed")


def _unreachable(step: str, error: httpx.HTTPError) -> ExternalServiceError:
    logger.error("Yousign %s failed: %r", step, error)
    return ExternalServiceError(f"Yousign: {step} failed")


async def create_signature_request(
    *,
    pdf_bytes: bytes,
    filename: str,
    reservation_id: str,
    first_name: str,
    last_name: str,
    email: str,
    phone: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Creates and activates a signature request for one signer.

    Returns the signature request id, the uploaded document id and the signer's
    signature link.
    """
    base = settings.YOUSIGN_API_URL
    headers = _headers()

    try:
        async with _client() as client:
            response = await client.post(f"{base}/signature_requests", headers=headers, json={
                "name": f"Contrat de location - {reservation_id[:8]}",
                "delivery_mode": "email",
                "timezone": "Europe/Paris",
                "email_custom_note": "Veuillez signer ce contrat de location de véhicule.",
            })
            _raise_for_status(response, "create signature request")
            signature_request_id = response.json()["id"]

            response = await client.post(
                f"{base}/signature_requests/{signature_request_id}/documents",
                headers=headers,
                files={"file": (filename, pdf_bytes, "application/pdf")},
                data={"nature": "signable_document"},
            )
            _raise_for_status(response, "upload document")
            document_id = response.json()["id"]

            signer_info = {
                "first_name": first_name,
                "last_name": last_name,
                "email": email,
                "locale": "fr",
            }
            if phone:
                signer_info["phone_number"] = phone
            response = await client.post(
                f"{base}/signature_requests/{signature_request_id}/signers",
                headers=headers,
                json={
                    "info": signer_info,
                    "signature_level": "electronic_signature",
                    "signature_authentication_mode": "otp_sms" if phone else "otp_email",
                    "fields": [{"document_id": document_id, "type": "signature", **SIGNATURE_FIELD}],
                },
            )
            _raise_for_status(response, "add signer")
            signer = response.json()

            response = await client.post(
                f"{base}/signature_requests/{signature_request_id}/activate", headers=headers
            )
            _raise_for_status(response, "activate signature request")
    except httpx.HTTPError as e:
        raise _unreachable("create signature request", e) from e

    logger.info("Yousign signature request %s activated for reservation %s", signature_request_id, reservation_id)
    return {
        "signature_request_id": signature_request_id,
        "document_id": document_id,
        "signature_link": signer.get("signature_link"),
    }


async def get_signature_request(signature_request_id: str) -> Dict[str, Any]:
    try:
        async with _client() as client:
            response = await client.get(
                f"{settings.YOUSIGN_API_URL}/signature_requests/{signature_request_id}",
                headers=_headers(),
            )
    except httpx.HTTPError as e:
        raise _unreachable("fetch signature request", e) from e
    _raise_for_status(response, "fetch signature request")
    return response.json()


async def download_signed_document(signature_request_id: str, document_id: str) -> bytes:
    try:
        async with _client() as client:
            response = await client.get(
                f"{settings.YOUSIGN_API_URL}/signature_requests/{signature_request_id}/documents/{document_id}/download",
                headers=_headers(),
            )
    except httpx.HTTPError as e:
        raise _unreachable("download signed document", e) from e
    _raise_for_status(response, "download signed document")
    return response.content
