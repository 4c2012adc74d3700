"""Error taxonomy shared by every layer of the vault engine."""
from __future__ import annotations


class VaultError(Exception):
	"""Base class for every failure the vault surfaces to its callers."""


class StorageError(VaultError): ...

class NotFound(StorageError):
	"""No row matches the given key (an error for delete/update, not for select)."""

class ConstraintViolation(StorageError):
	"""Missing foreign-key target or duplicate primary key."""

class CorruptRow(StorageError):
	"""A stored row does not decode into its entity shape."""

class TransactionFailure(StorageError):
	"""COMMIT or ROLLBACK itself failed. Not retried."""


class AuthFailure(VaultError):
	"""Password verification mismatch."""

class SessionClosed(VaultError):
	"""An UnlockedAccount was used after its key was wiped."""


class CryptoError(VaultError): ...

class DecryptionFailure(CryptoError):
	"""Authenticated decryption rejected the envelope (wrong key or tampering)."""


class IOFailure(VaultError):
	"""Filesystem access error."""
