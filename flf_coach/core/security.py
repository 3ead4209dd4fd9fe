import base64
import hashlib
import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

# Device-local secret used to seal the direct-provider API key in the settings table.
DEVICE_SECRET = os.getenv("FLF_DEVICE_SECRET", "flf-device-secret-change-me")


def _device_fernet(secret: str) -> Fernet:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


_fernet = _device_fernet(DEVICE_SECRET)


def seal_api_key(api_key: str) -> str:
    return _fernet.encrypt(api_key.encode("utf-8")).decode("utf-8")


def open_sealed_api_key(sealed: Optional[str]) -> Optional[str]:
    """Decrypt a stored key; a value sealed with another device secret reads as absent."""
    if not sealed:
        return None
    try:
        return _fernet.decrypt(sealed.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        logger.warning("stored_api_key_unreadable reason=invalid_token")
        return None


def mask_api_key(api_key: str) -> str:
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:4]}...{api_key[-4:]}"
