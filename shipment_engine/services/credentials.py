"""
Credential encryption/decryption and persisted provider token pairs.
"""
import json
import base64
import logging
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from shipment_engine.config import settings
from shipment_engine.models import ProviderCredential

logger = logging.getLogger(__name__)


def get_encryption_key() -> bytes:
    """Derive the Fernet key from ENCRYPTION_KEY (padded/truncated to 32 bytes)"""
    key_bytes = settings.ENCRYPTION_KEY.encode()[:32].ljust(32, b"0")
    return base64.urlsafe_b64encode(key_bytes)


def encrypt_token(token: str) -> str:
    f = Fernet(get_encryption_key())
    return f.encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    f = Fernet(get_encryption_key())
    return f.decrypt(encrypted.encode()).decode()


def load_token_pair(db: Session, provider_id: str) -> Optional[dict[str, Any]]:
    """Return {"access_token", "refresh_token"} stored for provider_id, or None."""
    cred = db.query(ProviderCredential).filter(ProviderCredential.provider_id == provider_id).first()
    if not cred or not cred.value_encrypted:
        return None
    try:
        data = json.loads(decrypt_token(cred.value_encrypted))
    except (InvalidToken, ValueError) as e:
        logger.warning("Stored %s credentials unreadable: %s", provider_id, e)
        return None
    return data if isinstance(data, dict) else None


def save_token_pair(db: Session, provider_id: str, access_token: Optional[str], refresh_token: Optional[str]) -> None:
    value = encrypt_token(json.dumps({"access_token": access_token, "refresh_token": refresh_token}))
    cred = db.query(ProviderCredential).filter(ProviderCredential.provider_id == provider_id).first()
    if cred:
        cred.value_encrypted = value
    else:
        db.add(ProviderCredential(provider_id=provider_id, value_encrypted=value))
    db.commit()
