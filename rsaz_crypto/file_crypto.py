import os
import re
import stat
import tempfile
import zipfile
import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .backend import DEFAULT_BACKEND, RsaBackend
from .errors import (
    AlreadyExistsError,
    ChunkEncryptionError,
    DecryptionError,
    DirectoryConflictError,
    FileIOError,
    InputNotFoundError,
    KeyDecodeError,
    MessageTooLargeError,
    NotAFileError,
    RsazError,
)

ALLOWED_KEY_SIZES = (128, 256, 512)
DEFAULT_KEY_SIZE = 256
MIN_CHUNK_SIZE = 10

PRIVATE_KEY_SUFFIX = '.PRIV.pem'
PUBLIC_KEY_SUFFIX = '.PUB.pem'

ARCHIVE_EXTENSION = '.zip'
PARTS_DIRECTORY = 'parts/'
# Informational entry that may sit at the archive root; never ciphertext.
README_ENTRY = 'README.md'

log = logging.getLogger(__name__)

_PART_NUMBER = re.compile(r'\.(\d+)$')


# --- Path helpers ---

def _check_input_file(path: str) -> None:
    if not os.path.exists(path):
        raise InputNotFoundError(f"Input file '{path}' does not exist")
    if not os.path.isfile(path):
        raise NotAFileError(f"Input file '{path}' is not a regular file")


def _check_output_free(path: str, what: str = 'Output file') -> None:
    if os.path.exists(path):
        raise AlreadyExistsError(f"{what} '{path}' already exists")


def _read_file(path: str, what: str) -> bytes:
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise FileIOError(f"Could not read {what} from '{path}'") from e


def _remove_quietly(path: str) -> None:
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        log.warning("Could not remove '%s': %s", path, e)


def _write_new_file(path: str, data: bytes, what: str, mode: int = 0o666) -> None:
    """Create `path` exclusively and write `data` to it.

    A file that already exists is reported as AlreadyExistsError and left
    untouched. If the write fails half way, the partial file is removed.
    """
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    except FileExistsError as e:
        raise AlreadyExistsError(f"Output file '{path}' already exists") from e
    except OSError as e:
        raise FileIOError(f"Could not save {what} to '{path}'") from e

    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
    except OSError as e:
        _remove_quietly(path)
        raise FileIOError(f"Could not save {what} to '{path}'") from e


def _temporary_sibling(path: str) -> str:
    """Create an empty temporary file next to `path`, so it can later be os.replace()d onto it."""
    fd, tmp_path = tempfile.mkstemp(
        prefix=f".{os.path.basename(path)}.", suffix='.tmp', dir=os.path.dirname(os.path.abspath(path))
    )
    os.close(fd)
    return tmp_path


def archive_path_for(output_path: str) -> str:
    """Path of the zip archive written instead of `output_path` when chunking."""
    return os.path.splitext(output_path)[0] + ARCHIVE_EXTENSION


def is_archive(path: str) -> bool:
    return os.path.splitext(path)[1].lower() == ARCHIVE_EXTENSION


# --- Key helpers ---

def generate_rsa_keys(output_directory: str, name: str, key_size_in_bytes: int = DEFAULT_KEY_SIZE, *, backend: Optional[RsaBackend] = None) -> Tuple[str, str]:
    """Generate an RSA keypair and save to '<dir>/<name>.PRIV.pem' & '<dir>/<name>.PUB.pem'.

    Both files are PKCS#1 PEM; the private one is readable by its owner only.
    Returns (private_path, public_path). Raises AlreadyExistsError if either
    file exists, in which case nothing is written. If the public key cannot be
    saved, the private key file written just before is removed again.
    """
    if key_size_in_bytes not in ALLOWED_KEY_SIZES:
        raise ValueError(
            f"Invalid key size {key_size_in_bytes}. Must be one of {', '.join(map(str, ALLOWED_KEY_SIZES))}."
        )
    backend = backend or DEFAULT_BACKEND

    if not os.path.exists(output_directory):
        try:
            os.makedirs(output_directory)
        except OSError as e:
            raise FileIOError(f"Could not create output directory '{output_directory}'") from e
    elif not os.path.isdir(output_directory):
        raise DirectoryConflictError(f"Output directory '{output_directory}' exists and is not a directory")

    private_key_file = os.path.join(output_directory, f"{name}{PRIVATE_KEY_SUFFIX}")
    public_key_file = os.path.join(output_directory, f"{name}{PUBLIC_KEY_SUFFIX}")
    _check_output_free(private_key_file, 'Private PEM file')
    _check_output_free(public_key_file, 'Public PEM file')

    key_size_in_bits = key_size_in_bytes * 8
    log.info("Attempt to generate RSA private key with bit size %d.", key_size_in_bits)
    if key_size_in_bits > 256 * 8:
        log.info("This may take a while...")
    private_key = backend.generate_private_key(key_size_in_bits)
    private_pem = backend.private_key_to_pem(private_key)
    log.info("Generated private key")

    public_pem = backend.public_key_to_pem(backend.public_key(private_key))
    log.info("Generated public key")

    _write_new_file(private_key_file, private_pem, 'private PEM contents', mode=stat.S_IRUSR | stat.S_IWUSR)
    try:
        _write_new_file(public_key_file, public_pem, 'public PEM contents')
    except RsazError:
        _remove_quietly(private_key_file)
        raise

    log.info("Saved private PEM contents in '%s'", private_key_file)
    log.info("Saved public PEM contents in '%s'", public_key_file)
    return private_key_file, public_key_file


def _load_key(path: str, decoders, kind: str):
    key_data = _read_file(path, f"{kind} PEM contents")
    attempts = []
    for name, decode in decoders:
        log.info("Attempt to check for %s method", name)
        try:
            return decode(key_data)
        except ValueError as e:
            log.warning("Could not decode %s key as %s: %s", kind, name, e)
            attempts.append((name, e))
    raise KeyDecodeError(f"Could not decode {kind} PEM contents from '{path}'", attempts)


def load_public_key(path: str, *, backend: Optional[RsaBackend] = None):
    """Load a PKCS#1 or PKCS#8 PEM public key, trying PKCS#1 first."""
    backend = backend or DEFAULT_BACKEND
    return _load_key(path, backend.public_key_decoders(), 'public')


def load_private_key(path: str, *, backend: Optional[RsaBackend] = None):
    """Load a PKCS#1 or PKCS#8 PEM private key, trying PKCS#1 first."""
    backend = backend or DEFAULT_BACKEND
    return _load_key(path, backend.private_key_decoders(), 'private')


# --- Bytes API ---

def encrypt_bytes(data: bytes, public_key, *, backend: Optional[RsaBackend] = None) -> bytes:
    """Encrypt `data` as a single ciphertext. Raises MessageTooLargeError if it does not fit the key."""
    backend = backend or DEFAULT_BACKEND
    return backend.encrypt(public_key, data)


def encrypt_chunks(data: bytes, public_key, *, backend: Optional[RsaBackend] = None) -> Iterator[Tuple[int, bytes]]:
    """Yield (chunk_number, ciphertext) pairs covering `data`, numbered from 1.

    Chunks start at the key's maximum payload size. A chunk the backend still
    refuses as too large halves the chunk size and is retried from the same
    offset; below MIN_CHUNK_SIZE this gives up with ChunkEncryptionError.
    The loop runs while offset <= len(data), so empty data and data that is an
    exact multiple of the chunk size both end with an empty chunk.
    """
    backend = backend or DEFAULT_BACKEND
    modulus_size = backend.modulus_size(public_key)
    chunk_size = backend.max_payload_size(public_key)
    chunk_number = 1
    offset = 0

    if chunk_size < MIN_CHUNK_SIZE:
        raise ChunkEncryptionError(chunk_number, min(chunk_size, len(data)), modulus_size)

    while offset <= len(data):
        chunk = data[offset:offset + chunk_size]
        try:
            ciphertext = backend.encrypt(public_key, chunk)
        except MessageTooLargeError as e:
            chunk_size //= 2
            if chunk_size < MIN_CHUNK_SIZE:
                raise ChunkEncryptionError(chunk_number, len(chunk), modulus_size) from e
            log.info("Updated chunk size to %d", chunk_size)
            continue
        log.debug("Encrypted part %d: %d bytes at offset %d", chunk_number, len(chunk), offset)
        yield chunk_number, ciphertext
        chunk_number += 1
        offset += chunk_size


def decrypt_bytes(blob: bytes, private_key, *, backend: Optional[RsaBackend] = None) -> bytes:
    backend = backend or DEFAULT_BACKEND
    return backend.decrypt(private_key, blob)


def ordered_part_names(names: Iterable[str]) -> List[str]:
    """Return the ciphertext entry names of an archive in part-number order.

    Directory entries and the README entry are skipped. Every other name must
    end in '.<n>' and the numbers must run 1..N without gaps or repeats;
    anything else raises DecryptionError, since concatenating parts in the
    wrong order would silently corrupt the output.
    """
    numbered: Dict[int, str] = {}
    for name in names:
        if name.endswith('/') or name == README_ENTRY:
            continue
        match = _PART_NUMBER.search(name)
        if match is None:
            raise DecryptionError(f"Archive entry '{name}' has no part number")
        number = int(match.group(1))
        if number in numbered:
            raise DecryptionError(f"Archive entries '{numbered[number]}' and '{name}' share part number {number}")
        numbered[number] = name

    if not numbered:
        raise DecryptionError("Archive contains no encrypted parts")
    numbers = sorted(numbered)
    if numbers != list(range(1, len(numbers) + 1)):
        raise DecryptionError(f"Archive parts are not numbered 1..{len(numbers)}: found {numbers}")
    return [numbered[number] for number in numbers]


def decrypt_parts(parts: Dict[str, bytes], private_key, *, backend: Optional[RsaBackend] = None) -> bytes:
    """Decrypt archive entries (name -> ciphertext) and join them in part order."""
    backend = backend or DEFAULT_BACKEND
    return b''.join(backend.decrypt(private_key, parts[name]) for name in ordered_part_names(parts))


# --- File API ---

def encrypt_file(public_key_path: str, input_path: str, output_path: str, *, zip_parts: bool = True, backend: Optional[RsaBackend] = None) -> str:
    """Encrypt `input_path` under the public key in `public_key_path`.

    Input that fits one RSA block is written to `output_path` as raw
    ciphertext. Larger input is split into parts stored in a zip archive next
    to `output_path` (extension replaced by '.zip') unless `zip_parts` is
    false, in which case MessageTooLargeError is raised. Returns the path
    actually written.
    """
    backend = backend or DEFAULT_BACKEND
    _check_input_file(input_path)
    _check_output_free(output_path)

    public_key = load_public_key(public_key_path, backend=backend)
    data = _read_file(input_path, 'input')

    try:
        ciphertext = encrypt_bytes(data, public_key, backend=backend)
    except MessageTooLargeError as e:
        if not zip_parts:
            log.info("Input size %d > Key capacity %d", e.size, e.capacity)
            raise MessageTooLargeError(
                e.size, e.capacity,
                f"Encryption failed: input '{input_path}' is {e.size} bytes but the key holds at most {e.capacity} bytes",
            ) from e
        ciphertext = None

    if ciphertext is None:
        return _encrypt_file_to_archive(data, public_key, output_path, backend)

    _write_new_file(output_path, ciphertext, 'encrypted output')
    log.info("Saved encrypted output to '%s'", output_path)
    return output_path


def _encrypt_file_to_archive(data: bytes, public_key, output_path: str, backend: RsaBackend) -> str:
    archive_path = archive_path_for(output_path)
    _check_output_free(archive_path, 'Output zip file')
    entry_prefix = PARTS_DIRECTORY + os.path.basename(output_path)
    log.info("Input does not fit a single block, saving parts to '%s'", archive_path)

    parts_directory = zipfile.ZipInfo(PARTS_DIRECTORY)
    parts_directory.external_attr = (0o40755 << 16) | 0x10

    tmp_path = None
    count = 0
    try:
        tmp_path = _temporary_sibling(archive_path)
        with zipfile.ZipFile(tmp_path, 'w', compression=zipfile.ZIP_STORED) as archive:
            archive.writestr(parts_directory, b'')
            for chunk_number, ciphertext in encrypt_chunks(data, public_key, backend=backend):
                archive.writestr(f"{entry_prefix}.{chunk_number}", ciphertext)
                count = chunk_number
        _check_output_free(archive_path, 'Output zip file')
        os.replace(tmp_path, archive_path)
    except AlreadyExistsError:
        raise
    except OSError as e:
        raise FileIOError(f"Could not write output zip file '{archive_path}'") from e
    finally:
        if tmp_path:
            _remove_quietly(tmp_path)

    log.info("Saved %d encrypted parts to '%s'", count, archive_path)
    return archive_path


def decrypt_file(private_key_path: str, input_path: str, output_path: str, *, backend: Optional[RsaBackend] = None) -> str:
    """Decrypt `input_path` (raw ciphertext, or a '.zip' of parts) into `output_path`.

    Nothing is left at `output_path` if decryption fails.
    """
    backend = backend or DEFAULT_BACKEND
    _check_input_file(input_path)
    _check_output_free(output_path)

    private_key = load_private_key(private_key_path, backend=backend)

    if is_archive(input_path):
        _decrypt_archive_to_file(input_path, private_key, output_path, backend)
    else:
        blob = _read_file(input_path, 'input')
        plaintext = decrypt_bytes(blob, private_key, backend=backend)
        _write_new_file(output_path, plaintext, 'decrypted output')

    log.info("Saved decrypted output to '%s'", output_path)
    return output_path


def _decrypt_archive_to_file(input_path: str, private_key, output_path: str, backend: RsaBackend) -> None:
    tmp_path = None
    try:
        tmp_path = _temporary_sibling(output_path)
        with zipfile.ZipFile(input_path) as archive, open(tmp_path, 'wb') as f_out:
            infos = [info for info in archive.infolist() if not info.is_dir()]
            # Ordering sees every member, so repeated names are rejected rather than collapsed.
            names = ordered_part_names([info.filename for info in infos])
            entries = {info.filename: info for info in infos}
            for name in names:
                ciphertext = archive.read(entries[name])
                try:
                    f_out.write(backend.decrypt(private_key, ciphertext))
                except DecryptionError as e:
                    raise DecryptionError(f"Could not decrypt part '{name}' from zip file '{input_path}'") from e
                log.debug("Decrypted part '%s'", name)
        _check_output_free(output_path)
        os.replace(tmp_path, output_path)
    except zipfile.BadZipFile as e:
        raise DecryptionError(f"Could not read zip file '{input_path}'") from e
    except AlreadyExistsError:
        raise
    except OSError as e:
        raise FileIOError(f"Could not decrypt zip file '{input_path}' to '{output_path}'") from e
    finally:
        if tmp_path:
            _remove_quietly(tmp_path)
