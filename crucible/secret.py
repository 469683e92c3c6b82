# Copyright 2016-2024, Pulumi Corporation.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Secret values and the password based encryption used to persist them.
"""
import base64
import os
from typing import Any, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import SecretEncryptionError

_SECRET_SENTINEL = "[secret]"

_ENCRYPTION_VERSION_V1 = "v1:"
_SALT_BYTES = 16
_NONCE_BYTES = 12
_KDF_ITERATIONS = 390000


class Secret:
    """
    Secret wraps a sensitive string. The value is never shown by str() or repr() and must be revealed
    explicitly. Two secrets are equal when their underlying values are equal.
    """

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        if isinstance(value, Secret):
            value = value.reveal()
        if not isinstance(value, str):
            raise TypeError(f"Expected a string secret value, got {type(value).__name__}")
        self._value = value

    @staticmethod
    def wrap(value: Union[str, "Secret"]) -> "Secret":
        """
        Returns `value` unchanged if it is already a Secret, otherwise wraps it.
        """
        return value if isinstance(value, Secret) else Secret(value)

    def reveal(self) -> str:
        return self._value

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Secret):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash((Secret, self._value))

    def __str__(self) -> str:
        return _SECRET_SENTINEL

    def __repr__(self) -> str:
        return f"Secret({_SECRET_SENTINEL})"

    def __format__(self, _spec: str) -> str:
        return _SECRET_SENTINEL

    # Secrets are immutable, copies can share the instance.
    def __copy__(self) -> "Secret":
        return self

    def __deepcopy__(self, _memo: Any) -> "Secret":
        return self


def secret(value: Union[str, Secret]) -> Secret:
    """
    Marks a string as secret.
    """
    return Secret.wrap(value)


def _derive_key(password: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=_KDF_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def encrypt(value: str, password: str) -> str:
    """
    Encrypts a value with a key derived from `password`.

    :param str value: The plaintext.
    :param str password: The passphrase used to derive the key.
    :return: A versioned, base64 encoded blob holding salt, nonce and ciphertext.
    """
    if not password:
        raise SecretEncryptionError("a password is required to encrypt secrets")
    salt = os.urandom(_SALT_BYTES)
    nonce = os.urandom(_NONCE_BYTES)
    ciphertext = AESGCM(_derive_key(password, salt)).encrypt(nonce, value.encode("utf-8"), None)
    return _ENCRYPTION_VERSION_V1 + base64.b64encode(salt + nonce + ciphertext).decode("ascii")


def decrypt(blob: str, password: str) -> str:
    """
    Decrypts a value produced by `encrypt`.

    :raises SecretEncryptionError: The blob is malformed or the password is wrong.
    """
    if not password:
        raise SecretEncryptionError("a password is required to decrypt secrets")
    if not blob.startswith(_ENCRYPTION_VERSION_V1):
        raise SecretEncryptionError("unsupported secret encoding")
    try:
        combined = base64.b64decode(blob[len(_ENCRYPTION_VERSION_V1):])
    except ValueError as e:
        raise SecretEncryptionError("secret is not valid base64") from e
    salt = combined[:_SALT_BYTES]
    nonce = combined[_SALT_BYTES:_SALT_BYTES + _NONCE_BYTES]
    ciphertext = combined[_SALT_BYTES + _NONCE_BYTES:]
    try:
        plaintext = AESGCM(_derive_key(password, salt)).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise SecretEncryptionError("failed to decrypt secret; is the password correct?") from e
    return plaintext.decode("utf-8")
