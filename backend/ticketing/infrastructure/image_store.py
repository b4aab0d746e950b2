"""
Payment-proof image storage.

The transaction core treats this as an opaque ``upload(proof) -> url`` that can
fail. ``proof`` is either a remote image URL or a ``data:image/...;base64,`` URI,
both of which Cloudinary accepts as the ``file`` field.
"""

import hashlib
import time
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from ticketing.core.logging import get_logger

logger = get_logger(__name__)

CLOUDINARY_UPLOAD_URL = "https://api.cloudinary.com/v1_1/{cloud_name}/image/upload"
PROOF_TRANSFORMATION = "c_limit,h_600,w_800/q_auto"


class UploadError(Exception):
    """The image store did not return a durable URL."""


class ImageStore(ABC):
    @abstractmethod
    async def upload(self, proof: str) -> str:
        """Store the image and return its durable URL. Raises UploadError."""
        ...

    async def close(self) -> None:
        """Release client resources on shutdown."""


class CloudinaryImageStore(ImageStore):
    """Signed uploads to Cloudinary's REST API."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "payment-proofs",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.upload_url = CLOUDINARY_UPLOAD_URL.format(cloud_name=cloud_name)
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _sign(self, params: dict) -> str:
        # Cloudinary signature: sha1 over the sorted, &-joined params followed by the secret
        payload = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{payload}{self.api_secret}".encode()).hexdigest()

    async def upload(self, proof: str) -> str:
        params = {
            "folder": self.folder,
            "timestamp": str(int(time.time())),
            "transformation": PROOF_TRANSFORMATION,
        }
        form = {
            **params,
            "file": proof,
            "api_key": self.api_key,
            "signature": self._sign(params),
        }

        try:
            response = await self._client.post(self.upload_url, data=form)
            response.raise_for_status()
            secure_url = response.json().get("secure_url")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("payment_proof_upload_failed", error=str(e))
            raise UploadError(str(e)) from e

        if not secure_url:
            logger.error("payment_proof_upload_failed", error="missing secure_url")
            raise UploadError("image store response did not include a URL")

        logger.info("payment_proof_uploaded", url=secure_url)
        return secure_url

    async def close(self) -> None:
        await self._client.aclose()


class PassthroughImageStore(ImageStore):
    """
    Used when no image store is configured.
    Accepts proofs that are already hosted (http/https URLs) and stores nothing.
    """

    async def upload(self, proof: str) -> str:
        url = httpx.URL(proof) if proof.startswith(("http://", "https://")) else None
        if url is None or not url.host:
            raise UploadError("image storage is not configured; payment proof must be an http(s) URL")
        return str(url)
