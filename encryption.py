"""
At-rest encryption for task text columns.

``DB_ENCRYPTION_KEY`` holds one Fernet key, or several separated by commas
for rotation: the first key encrypts new values, every key is tried when
reading. Without a key the columns store plain text.
"""
import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from dotenv import load_dotenv
from sqlalchemy.types import Text, TypeDecorator

load_dotenv()

logger = logging.getLogger(__name__)

# Column types are built at import time, so the key comes from the environment
# rather than from Settings.
_KEY = os.getenv("DB_ENCRYPTION_KEY")


def build_cipher(keys: Optional[str]) -> Optional[MultiFernet]:
    parts = [k.strip() for k in (keys or "").split(",") if k.strip()]
    if not parts:
        return None
    return MultiFernet([Fernet(k) for k in parts])


class EncryptedString(TypeDecorator):
    impl = Text
    cache_ok = True

    def __init__(self, key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.cipher = build_cipher(key or _KEY)

    def process_bind_param(self, value, dialect):
        if value is None or self.cipher is None:
            return value
        return self.cipher.encrypt(str(value).encode("utf-8")).decode("ascii")

    def process_result_value(self, value, dialect):
        if value is None or self.cipher is None:
            return value
        try:
            return self.cipher.decrypt(value.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            # Rows written before the key was configured are plaintext.
            logger.debug("Returning undecryptable column value as stored")
            return value


if not _KEY:
    logger.warning("DB_ENCRYPTION_KEY is not set; task text is stored unencrypted")
