"""Keyed one-way anonymization of call and SMS counterparties."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
import secrets
import threading

from phone_sensing.common.constants import HASH_KEY, HASH_SALT_BYTES, PHONE_NUMBER_SUFFIX_MODULUS
from phone_sensing.common.errors import PersistenceError
from phone_sensing.common.models import AnonymizedTarget
from phone_sensing.state.store import KeyValueStore, setdefault_with_retry

IS_NUMBER = re.compile(r"[+-]?[0-9]+")


class HashGenerator:
    """HMAC-SHA256 with an installation-local salt.

    The salt is created on first use and stored under ``hash.key``. Creation
    goes through the store's ``setdefault``, retried once like every other
    write, so concurrent first users agree on one salt.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._salt: bytes | None = None

    @property
    def salt(self) -> bytes:
        with self._lock:
            if self._salt is None:
                self._salt = self._load_or_create_salt()
            return self._salt

    def _load_or_create_salt(self) -> bytes:
        candidate = base64.b64encode(secrets.token_bytes(HASH_SALT_BYTES)).decode("ascii")
        stored = setdefault_with_retry(self.store, HASH_KEY, candidate)
        try:
            return base64.b64decode(stored, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise PersistenceError(f"Stored hash key is not valid base64: {exc}") from exc

    def hash_bytes(self, value: bytes) -> bytes:
        return hmac.new(self.salt, value, hashlib.sha256).digest()

    def hash_int(self, value: int) -> bytes:
        return self.hash_bytes(value.to_bytes(4, "big", signed=True))

    def hash_str(self, value: str) -> bytes:
        return self.hash_bytes(value.encode("utf-8"))


def numeric_phone_number(target: str) -> int | None:
    """The target as an integer, or None for names and short codes like 'Dropbox'."""
    if IS_NUMBER.fullmatch(target):
        return int(target)
    return None


def anonymize_target(target: str | None, hash_generator: HashGenerator) -> AnonymizedTarget:
    """Hash a phone number's last nine digits, or a non-numeric target verbatim.

    +31612345678 and 0612345678 both become 612345678 before hashing. A
    negative number yields no key.
    """
    if target is None:
        return AnonymizedTarget(key=None, is_non_numeric=True, length=0)

    phone_number = numeric_phone_number(target)
    if phone_number is None:
        key = hash_generator.hash_str(target)
    elif phone_number < 0:
        key = None
    else:
        key = hash_generator.hash_int(phone_number % PHONE_NUMBER_SUFFIX_MODULUS)
    return AnonymizedTarget(key=key, is_non_numeric=phone_number is None, length=len(target))
