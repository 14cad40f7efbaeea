import re
from typing import Callable, List, Tuple

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.backends import default_backend
from Crypto.Cipher import PKCS1_v1_5
from Crypto.PublicKey import RSA

from .errors import (
    DecryptionError,
    EncryptionError,
    KeyGenerationError,
    MessageTooLargeError,
    SerializationError,
)

PUBLIC_EXPONENT = 65537
# PKCS#1 v1.5 encryption padding: 0x00 0x02 <at least 8 random bytes> 0x00
PKCS1V15_OVERHEAD = 11

_PADDING_FAILED = object()

_PEM_LABEL = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----")

Decoder = Callable[[bytes], object]


def pem_label(key_data: bytes) -> str:
    match = _PEM_LABEL.search(key_data)
    if match is None:
        raise ValueError("no PEM block found")
    return match.group(1).decode('ascii')


class RsaBackend:
    """Capabilities the file layer needs from an RSA implementation.

    Keys are opaque to callers: they are only handed back to the backend that
    produced them. Implementations raise MessageTooLargeError from encrypt()
    when the payload exceeds what a single operation can carry, so the
    chunking loop can tell it apart from other failures.
    """

    def generate_private_key(self, key_size_in_bits: int):
        raise NotImplementedError

    def public_key(self, private_key):
        raise NotImplementedError

    def private_key_to_pem(self, private_key) -> bytes:
        raise NotImplementedError

    def public_key_to_pem(self, public_key) -> bytes:
        raise NotImplementedError

    def public_key_decoders(self) -> List[Tuple[str, Decoder]]:
        raise NotImplementedError

    def private_key_decoders(self) -> List[Tuple[str, Decoder]]:
        raise NotImplementedError

    def modulus_size(self, key) -> int:
        raise NotImplementedError

    def max_payload_size(self, public_key) -> int:
        return self.modulus_size(public_key) - PKCS1V15_OVERHEAD

    def encrypt(self, public_key, data: bytes) -> bytes:
        raise NotImplementedError

    def decrypt(self, private_key, ciphertext: bytes) -> bytes:
        raise NotImplementedError


class CryptographyBackend(RsaBackend):
    """RSA with PKCS#1 v1.5 padding on top of the `cryptography` package."""

    def generate_private_key(self, key_size_in_bits: int) -> rsa.RSAPrivateKey:
        try:
            return rsa.generate_private_key(
                public_exponent=PUBLIC_EXPONENT, key_size=key_size_in_bits, backend=default_backend()
            )
        except (ValueError, UnsupportedAlgorithm) as e:
            raise KeyGenerationError(f"Could not generate a {key_size_in_bits}-bit RSA key") from e

    def public_key(self, private_key: rsa.RSAPrivateKey) -> rsa.RSAPublicKey:
        return private_key.public_key()

    def private_key_to_pem(self, private_key: rsa.RSAPrivateKey) -> bytes:
        try:
            return private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption(),
            )
        except (ValueError, TypeError) as e:
            raise SerializationError("Could not write private key to PEM format") from e

    def public_key_to_pem(self, public_key: rsa.RSAPublicKey) -> bytes:
        try:
            return public_key.public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.PKCS1,
            )
        except (ValueError, TypeError) as e:
            raise SerializationError("Could not write public key to PEM format") from e

    def public_key_decoders(self) -> List[Tuple[str, Decoder]]:
        return [
            ('PKCS#1', lambda data: _load_public(data, 'RSA PUBLIC KEY')),
            ('PKCS#8', lambda data: _load_public(data, 'PUBLIC KEY')),
        ]

    def private_key_decoders(self) -> List[Tuple[str, Decoder]]:
        return [
            ('PKCS#1', lambda data: _load_private(data, 'RSA PRIVATE KEY')),
            ('PKCS#8', lambda data: _load_private(data, 'PRIVATE KEY')),
        ]

    def modulus_size(self, key) -> int:
        return (key.key_size + 7) // 8

    def encrypt(self, public_key: rsa.RSAPublicKey, data: bytes) -> bytes:
        capacity = self.max_payload_size(public_key)
        if len(data) > capacity:
            raise MessageTooLargeError(len(data), capacity)
        try:
            return public_key.encrypt(data, padding.PKCS1v15())
        except ValueError as e:
            raise EncryptionError("Encryption failed") from e

    def decrypt(self, private_key: rsa.RSAPrivateKey, ciphertext: bytes) -> bytes:
        expected = self.modulus_size(private_key)
        if len(ciphertext) != expected:
            raise DecryptionError(
                f"Ciphertext length {len(ciphertext)} does not match key modulus size {expected}"
            )
        # cryptography on OpenSSL >= 3.2 uses implicit rejection and returns random
        # bytes for bad padding, so unpadding goes through pycryptodome instead.
        cipher = PKCS1_v1_5.new(_to_pycryptodome(private_key))
        try:
            plaintext = cipher.decrypt(ciphertext, _PADDING_FAILED)
        except ValueError as e:
            raise DecryptionError("Decryption failed") from e
        if plaintext is _PADDING_FAILED:
            raise DecryptionError("Decryption failed: invalid PKCS#1 v1.5 padding (wrong key or corrupted ciphertext)")
        return plaintext


def _to_pycryptodome(private_key: rsa.RSAPrivateKey) -> RSA.RsaKey:
    numbers = private_key.private_numbers()
    return RSA.construct(
        (numbers.public_numbers.n, numbers.public_numbers.e, numbers.d, numbers.p, numbers.q),
        consistency_check=False,
    )


def _expect_label(key_data: bytes, expected: str) -> None:
    found = pem_label(key_data)
    if found != expected:
        raise ValueError(f"expected a '{expected}' PEM block, found '{found}'")


# Decoders report every failure as ValueError so callers can move on to the next one.

def _load_public(key_data: bytes, label: str) -> rsa.RSAPublicKey:
    _expect_label(key_data, label)
    try:
        key = serialization.load_pem_public_key(key_data)
    except UnsupportedAlgorithm as e:
        raise ValueError(str(e)) from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("File does not contain a valid RSA public key.")
    return key


def _load_private(key_data: bytes, label: str) -> rsa.RSAPrivateKey:
    _expect_label(key_data, label)
    try:
        key = serialization.load_pem_private_key(key_data, password=None)
    except (TypeError, UnsupportedAlgorithm) as e:
        raise ValueError(str(e)) from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("File does not contain a valid RSA private key.")
    return key


DEFAULT_BACKEND = CryptographyBackend()
