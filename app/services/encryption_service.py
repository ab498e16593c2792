"""
KMS envelope encryption for verification secrets.

KMS generates a fresh AES-256 data key per value; the value is sealed
locally with AES-GCM and only the KMS-encrypted copy of the data key is
stored next to the ciphertext.
"""
import base64
import json
import logging
import os
from dataclasses import asdict, dataclass
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import settings
from ..exceptions import ApiError, ErrorCode

logger = logging.getLogger(__name__)

IV_BYTES = 12
TAG_BYTES = 16


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@dataclass
class EncryptedPayload:
    ciphertext: str
    iv: str
    auth_tag: str
    encrypted_key: str

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "EncryptedPayload":
        try:
            return cls(**json.loads(raw))
        except (ValueError, TypeError) as e:
            raise ApiError(ErrorCode.DECRYPTION_FAILED,
                           details={"reason": f"malformed payload: {e}"})


class KMSEncryptionService:
    """Service for envelope encryption with AWS KMS data keys"""

    def __init__(self, key_id: Optional[str] = None,
                 region_name: Optional[str] = None, client=None):
        self.key_id = key_id or settings.kms_key_id
        self.region_name = region_name or settings.aws_region
        self._kms_client = client

    @property
    def kms_client(self):
        """Lazy initialization of KMS client"""
        if self._kms_client is None:
            self._kms_client = boto3.client("kms", region_name=self.region_name)
            logger.info("AWS KMS client initialized")
        return self._kms_client

    def encrypt(self, plaintext: str) -> EncryptedPayload:
        if not self.key_id:
            logger.error("Encryption requested but no KMS key is configured")
            raise ApiError(ErrorCode.ENCRYPTION_FAILED,
                           details={"reason": "kms key not configured"})
        try:
            response = self.kms_client.generate_data_key(
                KeyId=self.key_id, KeySpec="AES_256")
        except (BotoCoreError, ClientError) as e:
            logger.error(f"KMS generate_data_key failed: {e}")
            raise ApiError(ErrorCode.ENCRYPTION_FAILED)

        iv = os.urandom(IV_BYTES)
        sealed = AESGCM(response["Plaintext"]).encrypt(
            iv, plaintext.encode("utf-8"), None)
        return EncryptedPayload(
            ciphertext=_b64(sealed[:-TAG_BYTES]),
            iv=_b64(iv),
            auth_tag=_b64(sealed[-TAG_BYTES:]),
            encrypted_key=_b64(response["CiphertextBlob"]),
        )

    def decrypt(self, payload: EncryptedPayload) -> str:
        try:
            response = self.kms_client.decrypt(
                CiphertextBlob=base64.b64decode(payload.encrypted_key))
            data_key = response["Plaintext"]
            iv = base64.b64decode(payload.iv)
            sealed = base64.b64decode(payload.ciphertext) + \
                base64.b64decode(payload.auth_tag)
            return AESGCM(data_key).decrypt(iv, sealed, None).decode("utf-8")
        except (BotoCoreError, ClientError) as e:
            logger.error(f"KMS decrypt failed: {e}")
            raise ApiError(ErrorCode.DECRYPTION_FAILED)
        except (InvalidTag, ValueError) as e:
            logger.error(f"Local decryption failed: {e!r}")
            raise ApiError(ErrorCode.DECRYPTION_FAILED)


encryption_service = KMSEncryptionService()


def get_encryption_service() -> KMSEncryptionService:
    return encryption_service
