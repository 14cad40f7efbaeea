from typing import List, Optional, Tuple


class RsazError(Exception):
    """Base class for every error raised by rsaz_crypto."""


class AlreadyExistsError(RsazError, FileExistsError):
    pass


class InputNotFoundError(RsazError, FileNotFoundError):
    pass


class NotAFileError(RsazError, OSError):
    pass


class DirectoryConflictError(RsazError, NotADirectoryError):
    pass


class FileIOError(RsazError, OSError):
    pass


class KeyGenerationError(RsazError):
    pass


class SerializationError(RsazError):
    pass


class KeyDecodeError(RsazError, ValueError):
    """Raised when no PEM decoder accepted a key file.

    `attempts` holds one (decoder name, exception) pair per decoder tried,
    in the order they were tried.
    """

    def __init__(self, message: str, attempts: Optional[List[Tuple[str, Exception]]] = None):
        self.attempts = list(attempts or [])
        if self.attempts:
            details = '; '.join(f"{name}: {error}" for name, error in self.attempts)
            message = f"{message} ({details})"
        super().__init__(message)


class EncryptionError(RsazError):
    pass


class MessageTooLargeError(EncryptionError):
    def __init__(self, size: int, capacity: int, message: Optional[str] = None):
        self.size = size
        self.capacity = capacity
        if message is None:
            message = f"Input size {size} > key capacity {capacity}"
        super().__init__(message)


class ChunkEncryptionError(EncryptionError):
    def __init__(self, chunk_number: int, chunk_length: int, modulus_size: int):
        self.chunk_number = chunk_number
        self.chunk_length = chunk_length
        self.modulus_size = modulus_size
        super().__init__(
            f"Could not encrypt file part {chunk_number} with {chunk_length} bytes "
            f"with key modulus size {modulus_size}"
        )


class DecryptionError(RsazError, ValueError):
    pass
