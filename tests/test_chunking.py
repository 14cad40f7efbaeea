import unittest
import random

import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from rsaz_crypto import (
    encrypt_chunks,
    decrypt_parts,
    ordered_part_names,
    ChunkEncryptionError,
    MessageTooLargeError,
    DecryptionError,
    MIN_CHUNK_SIZE,
)
from fake_backend import FakeBackend, FakeKey


class TestEncryptChunks(unittest.TestCase):
    """Test cases for the chunked encryption loop."""

    def setUp(self):
        self.backend = FakeBackend()
        self.key = FakeKey(128)

    def _decrypt_all(self, chunks, key=None):
        key = key or self.key
        return [self.backend.decrypt(key, ciphertext) for _, ciphertext in chunks]

    def test_numbers_are_contiguous_from_one(self):
        chunks = list(encrypt_chunks(bytes(1000), self.key, backend=self.backend))
        self.assertEqual([number for number, _ in chunks], list(range(1, 10)))

    def test_slices_concatenate_to_input(self):
        data = bytes(random.Random(1).getrandbits(8) for _ in range(1000))
        slices = self._decrypt_all(encrypt_chunks(data, self.key, backend=self.backend))
        self.assertEqual(b''.join(slices), data)
        self.assertTrue(all(len(s) <= 117 for s in slices))
        self.assertEqual(len(slices[-1]), 1000 - 8 * 117)

    def test_exact_multiple_ends_with_empty_chunk(self):
        data = b'x' * 234
        slices = self._decrypt_all(encrypt_chunks(data, self.key, backend=self.backend))
        self.assertEqual([len(s) for s in slices], [117, 117, 0])
        self.assertEqual(b''.join(slices), data)

    def test_empty_input_yields_one_chunk(self):
        chunks = list(encrypt_chunks(b'', self.key, backend=self.backend))
        self.assertEqual(len(chunks), 1)
        self.assertEqual(chunks[0][0], 1)
        self.assertEqual(self._decrypt_all(chunks), [b''])

    def test_large_input_chunk_count(self):
        data = b'a' * 50000
        slices = self._decrypt_all(encrypt_chunks(data, self.key, backend=self.backend))
        self.assertEqual(len(slices), 428)
        self.assertEqual(b''.join(slices), data)

    def test_halves_chunk_size_when_backend_refuses(self):
        key = FakeKey(128, accepts=50)
        data = bytes(range(100))
        chunks = list(encrypt_chunks(data, key, backend=self.backend))

        # 100 (whole tail) and 58 are refused, 29 is accepted and kept for the rest.
        self.assertEqual(self.backend.encrypt_calls, [100, 58, 29, 29, 29, 13])
        self.assertEqual([number for number, _ in chunks], [1, 2, 3, 4])
        self.assertEqual(b''.join(self._decrypt_all(chunks, key)), data)

    def test_gives_up_below_minimum_chunk_size(self):
        key = FakeKey(128, accepts=5)
        with self.assertRaises(ChunkEncryptionError) as ctx:
            list(encrypt_chunks(bytes(200), key, backend=self.backend))

        error = ctx.exception
        self.assertEqual(error.chunk_number, 1)
        self.assertEqual(error.chunk_length, 14)
        self.assertEqual(error.modulus_size, 128)
        self.assertIn("file part 1 with 14 bytes with key modulus size 128", str(error))
        self.assertLess(14 // 2, MIN_CHUNK_SIZE)

    def test_key_capacity_below_minimum_chunk_size(self):
        # 15-byte modulus leaves 4 bytes of payload, under the 10-byte floor.
        key = FakeKey(15)
        with self.assertRaises(ChunkEncryptionError) as ctx:
            list(encrypt_chunks(b'ab', key, backend=self.backend))
        self.assertEqual(ctx.exception.chunk_number, 1)
        self.assertEqual(ctx.exception.chunk_length, 2)
        self.assertEqual(ctx.exception.modulus_size, 15)
        self.assertEqual(self.backend.encrypt_calls, [])

        with self.assertRaises(ChunkEncryptionError) as ctx:
            list(encrypt_chunks(bytes(100), key, backend=self.backend))
        self.assertEqual(ctx.exception.chunk_length, 4)

    def test_failure_on_later_chunk_names_that_chunk(self):
        key = FakeKey(128)
        backend = FakeBackend()
        real_encrypt = backend.encrypt

        def refuse_third(public_key, data):
            if len(backend.encrypt_calls) >= 2:
                backend.encrypt_calls.append(len(data))
                raise MessageTooLargeError(len(data), 0)
            return real_encrypt(public_key, data)

        backend.encrypt = refuse_third
        with self.assertRaises(ChunkEncryptionError) as ctx:
            list(encrypt_chunks(bytes(1000), key, backend=backend))
        self.assertEqual(ctx.exception.chunk_number, 3)


class TestOrderedPartNames(unittest.TestCase):
    """Test cases for archive entry ordering."""

    def test_sorts_numerically_not_lexically(self):
        names = [f"parts/out.bin.{n}" for n in range(1, 13)]
        shuffled = list(names)
        random.Random(7).shuffle(shuffled)
        self.assertEqual(ordered_part_names(shuffled), names)

    def test_skips_directories_and_readme(self):
        names = ['parts/', 'README.md', 'parts/out.2', 'parts/out.1']
        self.assertEqual(ordered_part_names(names), ['parts/out.1', 'parts/out.2'])

    def test_gap_in_numbering(self):
        with self.assertRaises(DecryptionError) as ctx:
            ordered_part_names(['parts/out.1', 'parts/out.3'])
        self.assertIn("not numbered 1..2", str(ctx.exception))

    def test_numbering_must_start_at_one(self):
        with self.assertRaises(DecryptionError):
            ordered_part_names(['parts/out.0', 'parts/out.1'])

    def test_duplicate_number(self):
        with self.assertRaises(DecryptionError):
            ordered_part_names(['parts/a.1', 'parts/b.1'])

    def test_entry_without_number(self):
        with self.assertRaises(DecryptionError):
            ordered_part_names(['parts/out.1', 'notes.txt'])

    def test_no_parts(self):
        with self.assertRaises(DecryptionError):
            ordered_part_names(['parts/', 'README.md'])


class TestDecryptParts(unittest.TestCase):

    def test_reassembles_in_part_order(self):
        backend = FakeBackend()
        key = FakeKey(64)
        data = bytes(range(256)) * 3
        parts = {f"parts/out.{n}": c for n, c in encrypt_chunks(data, key, backend=backend)}
        reversed_parts = dict(reversed(list(parts.items())))
        self.assertEqual(decrypt_parts(reversed_parts, key, backend=backend), data)

    def test_wrong_key(self):
        backend = FakeBackend()
        parts = dict((f"parts/out.{n}", c) for n, c in encrypt_chunks(b'hello' * 40, FakeKey(64), backend=backend))
        with self.assertRaises(DecryptionError):
            decrypt_parts(parts, FakeKey(64, secret=0x11), backend=backend)


if __name__ == '__main__':
    unittest.main()
