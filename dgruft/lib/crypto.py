"""Cryptographic utilities (authenticated envelopes + key derivation)."""
from __future__ import annotations
import secrets
from dataclasses import dataclass
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.backends import default_backend
from config.settings import (
	DEFAULT_ITERATIONS, SALT_LENGTH, KEY_LENGTH, NONCE_LENGTH, AUTH_TAG_LENGTH
)
from .errors import CryptoError, DecryptionFailure

NAME_NONCE_TAG = b'dgruft/credential-name/v1\x00'


@dataclass(frozen=True)
class Envelope:
	"""AES-256-GCM output: ciphertext with the tag appended, plus its nonce."""
	cipherbytes: bytes
	nonce: bytes


class VaultCrypto:
	def __init__(self):
		self._backend = default_backend()

	def generate_salt(self) -> bytes:
		return secrets.token_bytes(SALT_LENGTH)

	def new_key(self) -> bytearray:
		return bytearray(secrets.token_bytes(KEY_LENGTH))

	def new_nonce(self) -> bytes:
		return secrets.token_bytes(NONCE_LENGTH)

	def derive_key(self, password: str, salt: bytes, iterations: int = DEFAULT_ITERATIONS) -> bytearray:
		if not password:
			raise CryptoError("Password empty")
		kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_LENGTH, salt=salt, iterations=iterations, backend=self._backend)
		return bytearray(kdf.derive(password.encode('utf-8')))

	def name_nonce(self, key, name: bytes) -> bytes:
		"""Synthetic nonce for the one field that must encrypt deterministically.

		Equal names under one key map to one nonce; distinct names get distinct
		nonces, so (key, nonce) is never reused for different plaintexts.
		"""
		self._check_key(key)
		mac = hmac.HMAC(key, hashes.SHA256(), backend=self._backend)
		mac.update(NAME_NONCE_TAG + name)
		return mac.finalize()[:NONCE_LENGTH]

	def encrypt(self, plaintext: bytes, key, nonce: bytes) -> Envelope:
		self._check_key(key)
		if len(nonce) != NONCE_LENGTH: raise CryptoError("Bad nonce length")
		cipher = Cipher(algorithms.AES(key), modes.GCM(nonce), backend=self._backend)
		enc = cipher.encryptor()
		ct = enc.update(plaintext) + enc.finalize()
		return Envelope(ct + enc.tag, bytes(nonce))

	def decrypt(self, envelope: Envelope, key) -> bytes:
		self._check_key(key)
		blob, nonce = envelope.cipherbytes, envelope.nonce
		if len(nonce) != NONCE_LENGTH: raise DecryptionFailure("Bad nonce length")
		if len(blob) < AUTH_TAG_LENGTH: raise DecryptionFailure("Ciphertext too short")
		ct, tag = blob[:-AUTH_TAG_LENGTH], blob[-AUTH_TAG_LENGTH:]
		cipher = Cipher(algorithms.AES(key), modes.GCM(nonce, tag), backend=self._backend)
		dec = cipher.decryptor()
		try:
			return dec.update(ct) + dec.finalize()
		except InvalidTag as e:
			raise DecryptionFailure("Decrypt failed: authentication tag mismatch") from e

	@staticmethod
	def _check_key(key) -> None:
		if len(key) != KEY_LENGTH: raise CryptoError("Bad key length")
