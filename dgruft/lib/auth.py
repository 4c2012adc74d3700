"""Authentication and account key management.

Login passwords are checked against a bcrypt verifier. Encryption never uses
that hash: each account has a random data-encryption key (DEK) stored wrapped
under a PBKDF2 key derived from the password, so a password change only
re-wraps the DEK.
"""
from __future__ import annotations
import logging
import bcrypt
from config.settings import BCRYPT_ROUNDS, DEFAULT_ITERATIONS
from .crypto import Envelope, VaultCrypto
from .errors import AuthFailure, SessionClosed
from .models import Account, Credential, DecryptedCredential
from .utils import check_name

log = logging.getLogger(__name__)


def hash_password(password: str, rounds: int | None = None) -> str:
	if not password:
		raise ValueError('Empty password')
	return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds or BCRYPT_ROUNDS)).decode()

def verify_password(password: str, hashed: str) -> bool:
	try:
		return bcrypt.checkpw(password.encode(), hashed.encode())
	except ValueError:
		return False


def _zero(buf: bytearray) -> None:
	for i in range(len(buf)):
		buf[i] = 0


class UnlockedAccount:
	"""Session holding an account's cleartext DEK.

	The key is a bytearray owned by the session and overwritten with zeros by
	close(); use the session as a context manager so that happens on every
	exit path.
	"""

	def __init__(self, username: str, key: bytearray, crypto: VaultCrypto | None = None):
		self.username = username
		self._key = key
		self._crypto = crypto or VaultCrypto()
		self._closed = False

	def __enter__(self) -> 'UnlockedAccount':
		return self

	def __exit__(self, *exc) -> None:
		self.close()

	def __repr__(self) -> str:
		state = 'closed' if self._closed else 'unlocked'
		return f'UnlockedAccount({self.username!r}, {state})'

	@property
	def closed(self) -> bool:
		return self._closed

	@property
	def key(self) -> bytearray:
		if self._closed:
			raise SessionClosed(f'Session for {self.username} is closed')
		return self._key

	def close(self) -> None:
		if not self._closed:
			_zero(self._key)
			self._closed = True

	def encrypt_bytes(self, data: bytes) -> Envelope:
		return self._crypto.encrypt(data, self.key, self._crypto.new_nonce())

	def decrypt_bytes(self, envelope: Envelope) -> bytes:
		return self._crypto.decrypt(envelope, self.key)

	def encrypt_field(self, text: str) -> Envelope:
		return self.encrypt_bytes(text.encode('utf-8'))

	def decrypt_field(self, envelope: Envelope) -> str:
		return self.decrypt_bytes(envelope).decode('utf-8')

	def encrypt_name(self, name: str) -> Envelope:
		raw = name.encode('utf-8')
		return self._crypto.encrypt(raw, self.key, self._crypto.name_nonce(self.key, raw))

	def decrypt_credential(self, cred: Credential) -> DecryptedCredential:
		if cred.owner_username != self.username:
			raise AuthFailure(f'Credential belongs to {cred.owner_username}, not {self.username}')
		return DecryptedCredential(
			name=self.decrypt_field(cred.encrypted_name),
			login_username=self.decrypt_field(cred.encrypted_login_username),
			password=self.decrypt_field(cred.encrypted_password),
			notes=self.decrypt_field(cred.encrypted_notes),
		)


def _wrap(crypto: VaultCrypto, dek: bytearray, password: str, iterations: int) -> tuple[bytes, Envelope]:
	salt = crypto.generate_salt()
	wrapping_key = crypto.derive_key(password, salt, iterations)
	try:
		return salt, crypto.encrypt(bytes(dek), wrapping_key, crypto.new_nonce())
	finally:
		_zero(wrapping_key)


def register(username: str, password: str, iterations: int = DEFAULT_ITERATIONS) -> Account:
	"""Build a fresh Account row: bcrypt verifier plus a new wrapped DEK."""
	check_name(username, 'username')
	verifier = hash_password(password)
	crypto = VaultCrypto()
	dek = crypto.new_key()
	try:
		salt, envelope = _wrap(crypto, dek, password, iterations)
	finally:
		_zero(dek)
	return Account(username, verifier, salt, envelope)


def unlock(account: Account, password: str, iterations: int = DEFAULT_ITERATIONS) -> UnlockedAccount:
	"""Check the password, then unwrap the DEK into a session.

	A wrong password raises AuthFailure before the envelope is touched. If the
	password is right but the envelope does not open, the row was tampered with
	and DecryptionFailure propagates.
	"""
	if not verify_password(password, account.password_verifier):
		log.info('Password mismatch for account %s', account.username)
		raise AuthFailure(f'Wrong password for account {account.username}')
	crypto = VaultCrypto()
	wrapping_key = crypto.derive_key(password, account.key_salt, iterations)
	try:
		dek = bytearray(crypto.decrypt(account.data_key_envelope, wrapping_key))
	finally:
		_zero(wrapping_key)
	return UnlockedAccount(account.username, dek, crypto)


def rewrap(account: Account, old_password: str, new_password: str, iterations: int = DEFAULT_ITERATIONS) -> Account:
	"""Return `account` with its DEK wrapped under `new_password`."""
	with unlock(account, old_password, iterations) as session:
		verifier = hash_password(new_password)
		salt, envelope = _wrap(session._crypto, session.key, new_password, iterations)
	return Account(account.username, verifier, salt, envelope)
