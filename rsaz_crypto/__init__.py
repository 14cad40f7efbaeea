"""
RSA file encryption utilities (PKCS#1 v1.5, zip-packed parts for large input).

High-level API:
- generate_rsa_keys(output_directory, name, key_size_in_bytes=256) -> (private_path, public_path)
- encrypt_file(public_key_path, input_path, output_path, zip_parts=True) -> written_path
- decrypt_file(private_key_path, input_path, output_path) -> output_path
- load_public_key(path) / load_private_key(path) -> key (PKCS#1 PEM, falling back to PKCS#8)
- encrypt_bytes / encrypt_chunks / decrypt_bytes / decrypt_parts for in-memory data

Every function takes an optional `backend` (an RsaBackend); the default one is
built on the `cryptography` package.

Exceptions are raised on errors instead of printing; all derive from RsazError.
"""

from .backend import RsaBackend, CryptographyBackend, DEFAULT_BACKEND
from .errors import (
    RsazError,
    AlreadyExistsError,
    InputNotFoundError,
    NotAFileError,
    DirectoryConflictError,
    FileIOError,
    KeyGenerationError,
    SerializationError,
    KeyDecodeError,
    EncryptionError,
    MessageTooLargeError,
    ChunkEncryptionError,
    DecryptionError,
)
from .file_crypto import (
    generate_rsa_keys,
    load_public_key,
    load_private_key,
    encrypt_bytes,
    encrypt_chunks,
    decrypt_bytes,
    decrypt_parts,
    ordered_part_names,
    encrypt_file,
    decrypt_file,
    archive_path_for,
    is_archive,
    ALLOWED_KEY_SIZES,
    DEFAULT_KEY_SIZE,
    MIN_CHUNK_SIZE,
)

__all__ = [
    "RsaBackend",
    "CryptographyBackend",
    "DEFAULT_BACKEND",
    "RsazError",
    "AlreadyExistsError",
    "InputNotFoundError",
    "NotAFileError",
    "DirectoryConflictError",
    "FileIOError",
    "KeyGenerationError",
    "SerializationError",
    "KeyDecodeError",
    "EncryptionError",
    "MessageTooLargeError",
    "ChunkEncryptionError",
    "DecryptionError",
    "generate_rsa_keys",
    "load_public_key",
    "load_private_key",
    "encrypt_bytes",
    "encrypt_chunks",
    "decrypt_bytes",
    "decrypt_parts",
    "ordered_part_names",
    "encrypt_file",
    "decrypt_file",
    "archive_path_for",
    "is_archive",
    "ALLOWED_KEY_SIZES",
    "DEFAULT_KEY_SIZE",
    "MIN_CHUNK_SIZE",
]
