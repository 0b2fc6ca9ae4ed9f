import hashlib
import secrets
import uuid
from typing import Union

DEFAULT_ENCODING = "utf-8"


def to_str(obj: Union[str, bytes], encoding: str = DEFAULT_ENCODING, errors: str = "strict") -> str:
    """Decodes ``obj`` if it is bytes, returns it unchanged otherwise"""
    if isinstance(obj, bytes):
        return obj.decode(encoding, errors)
    return obj


def to_bytes(obj: Union[str, bytes], encoding: str = DEFAULT_ENCODING, errors: str = "strict") -> bytes:
    """Encodes ``obj`` if it is a string, returns it unchanged otherwise"""
    if isinstance(obj, str):
        return obj.encode(encoding, errors)
    return obj


def long_uid() -> str:
    return str(uuid.uuid4())


def short_uid() -> str:
    return uuid.uuid4().hex[:8]


def get_random_hex(length: int) -> str:
    """Random lowercase hex string, used for the suffixes of generated physical resource ids"""
    return secrets.token_hex((length + 1) // 2)[:length]


def hash_sha256(value: Union[str, bytes]) -> str:
    return hashlib.sha256(to_bytes(value)).hexdigest()
