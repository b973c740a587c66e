"""AES-128 CBC and GCM message encryption with a reusable cipher context."""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

BLOCK_SIZE = 16
KEY_LENGTH = 16
MIN_TAG_LENGTH = 4
MAX_TAG_LENGTH = 16


class Algorithm(enum.IntEnum):
    AES_CBC = 1
    AES_GCM = 2


class CipherFlag(enum.IntFlag):
    NONE = 0
    RESET_IV = 0x01
    FINISH = 0x02
    PAD_TO_BLOCK_SIZE = 0x04


class CryptoError(Exception):
    """Encryption or decryption failed."""


def round_to_pkcs7_padded_len(length: int) -> int:
    """Round ``length`` up to a whole number of AES blocks."""
    return ((length + BLOCK_SIZE - 1) // BLOCK_SIZE) * BLOCK_SIZE


def add_pkcs7_padding(data: bytes) -> bytes:
    """Pad ``data`` to the block size with PKCS7 bytes.

    Data that already fills whole blocks is returned unchanged.
    """
    data = bytes(data)
    padded_length = round_to_pkcs7_padded_len(len(data))
    padding_byte = BLOCK_SIZE - (len(data) % BLOCK_SIZE)
    return data + bytes([padding_byte]) * (padded_length - len(data))


def generate_random_data(length: int) -> bytes:
    """Return ``length`` cryptographically secure random bytes."""
    if length < 0:
        raise ValueError("length must not be negative")
    return os.urandom(length)


def _check_key(key: bytes) -> bytes:
    key = bytes(key)
    if len(key) != KEY_LENGTH:
        raise ValueError(f"AES-128 needs a {KEY_LENGTH}-byte key, got {len(key)} bytes")
    return key


class _CbcStream:
    """A CBC chain that carries its IV and any partial block between calls.

    Final-block padding follows the usual streaming cipher convention:
    finishing an encryption always appends a PKCS7 block, and decryption
    holds back the last whole block until it is finished.
    """

    def __init__(self, key: bytes, iv: bytes, encrypting: bool) -> None:
        self._key = key
        self._encrypting = encrypting
        self._iv = b""
        self._pending = b""
        self.reset(iv)

    def reset(self, iv: bytes) -> None:
        iv = bytes(iv)
        if len(iv) != BLOCK_SIZE:
            raise CryptoError(f"CBC needs a {BLOCK_SIZE}-byte IV, got {len(iv)} bytes")
        self._iv = iv
        self._pending = b""

    def _process(self, blocks: bytes) -> bytes:
        if not blocks:
            return b""
        cipher = Cipher(algorithms.AES(self._key), modes.CBC(self._iv))
        ctx = cipher.encryptor() if self._encrypting else cipher.decryptor()
        out = ctx.update(blocks) + ctx.finalize()
        chained = out if self._encrypting else blocks
        self._iv = chained[-BLOCK_SIZE:]
        return out

    def update(self, data: bytes) -> bytes:
        buf = self._pending + bytes(data)
        cut = (len(buf) // BLOCK_SIZE) * BLOCK_SIZE
        if not self._encrypting and cut and cut == len(buf):
            # Keep the last block back: it may carry the padding.
            cut -= BLOCK_SIZE
        self._pending = buf[cut:]
        return self._process(buf[:cut])

    def finish(self) -> bytes:
        pending, self._pending = self._pending, b""
        if self._encrypting:
            pad = BLOCK_SIZE - len(pending)
            return self._process(pending + bytes([pad]) * pad)

        if len(pending) != BLOCK_SIZE:
            raise CryptoError("ciphertext does not end on a block boundary")
        plain = self._process(pending)
        pad = plain[-1]
        if not 1 <= pad <= BLOCK_SIZE or plain[-pad:] != bytes([pad]) * pad:
            raise CryptoError("bad padding in final block")
        return plain[:-pad]


@dataclass
class _DirectionState:
    algorithm: Algorithm
    key: bytes
    stream: _CbcStream | None


class CryptoContext:
    """Cipher state kept across messages.

    The key is taken when the context is first used in a direction; later
    calls do not change it, except that a GCM call with RESET_IV performs a
    full reinitialisation. For CBC the chain carries on from one call to the
    next until RESET_IV starts it again from the given IV. Encryption and
    decryption keep separate state.
    """

    def __init__(self) -> None:
        self._states: dict[bool, _DirectionState] = {}

    def _state(
        self, encrypting: bool, algorithm: Algorithm, flags: CipherFlag, key: bytes, iv: bytes
    ) -> _DirectionState:
        state = self._states.get(encrypting)
        if state is None:
            stream = _CbcStream(key, iv, encrypting) if algorithm is Algorithm.AES_CBC else None
            state = _DirectionState(algorithm, key, stream)
            self._states[encrypting] = state
            return state

        if state.algorithm is not algorithm:
            raise CryptoError(
                f"context was initialised for {state.algorithm.name}, not {algorithm.name}"
            )
        if flags & CipherFlag.RESET_IV:
            if algorithm is Algorithm.AES_GCM:
                state.key = key
            else:
                assert state.stream is not None
                state.stream.reset(iv)
        return state

    @staticmethod
    def _gcm_mode(iv: bytes, tag: bytes | None = None) -> modes.GCM:
        try:
            if tag is None:
                return modes.GCM(bytes(iv))
            return modes.GCM(bytes(iv), tag, min_tag_length=len(tag))
        except ValueError as exc:
            raise CryptoError(str(exc)) from exc

    def encrypt(
        self,
        algorithm: Algorithm | int,
        flags: CipherFlag | int,
        key: bytes,
        iv: bytes,
        data: bytes,
        tag_length: int | None = None,
    ) -> tuple[bytes, bytes]:
        """Encrypt ``data`` and return ``(ciphertext, tag)``.

        For CBC the tag is empty and ``tag_length`` must be 0 or None. For
        GCM ``tag_length`` defaults to 16 bytes.
        """
        algorithm = Algorithm(algorithm)
        flags = CipherFlag(flags)
        key = _check_key(key)
        data = bytes(data)

        if algorithm is Algorithm.AES_GCM:
            if tag_length is None:
                tag_length = MAX_TAG_LENGTH
            if not MIN_TAG_LENGTH <= tag_length <= MAX_TAG_LENGTH:
                raise ValueError(
                    f"GCM tag length must be {MIN_TAG_LENGTH} to {MAX_TAG_LENGTH} bytes"
                )
            state = self._state(True, algorithm, flags, key, iv)
            encryptor = Cipher(algorithms.AES(state.key), self._gcm_mode(iv)).encryptor()
            ciphertext = encryptor.update(data) + encryptor.finalize()
            return ciphertext, encryptor.tag[:tag_length]

        if tag_length:
            raise ValueError("CBC does not produce a tag")
        state = self._state(True, algorithm, flags, key, iv)
        assert state.stream is not None
        if flags & CipherFlag.PAD_TO_BLOCK_SIZE:
            data = add_pkcs7_padding(data)
        ciphertext = state.stream.update(data)
        if flags & CipherFlag.FINISH:
            ciphertext += state.stream.finish()
        return ciphertext, b""

    def decrypt(
        self,
        algorithm: Algorithm | int,
        flags: CipherFlag | int,
        key: bytes,
        iv: bytes,
        data: bytes,
        tag: bytes | None = None,
    ) -> bytes:
        """Decrypt ``data`` and return the plaintext.

        GCM needs the authentication ``tag`` and raises CryptoError when it
        does not match. CBC takes no tag.
        """
        algorithm = Algorithm(algorithm)
        flags = CipherFlag(flags)
        key = _check_key(key)
        data = bytes(data)

        if algorithm is Algorithm.AES_GCM:
            if not tag:
                raise ValueError("GCM decryption needs a tag")
            tag = bytes(tag)
            state = self._state(False, algorithm, flags, key, iv)
            decryptor = Cipher(algorithms.AES(state.key), self._gcm_mode(iv, tag)).decryptor()
            try:
                return decryptor.update(data) + decryptor.finalize()
            except InvalidTag as exc:
                raise CryptoError("GCM authentication tag mismatch") from exc

        if tag:
            raise ValueError("CBC does not take a tag")
        state = self._state(False, algorithm, flags, key, iv)
        assert state.stream is not None
        plaintext = state.stream.update(data)
        if flags & CipherFlag.FINISH:
            plaintext += state.stream.finish()
        return plaintext