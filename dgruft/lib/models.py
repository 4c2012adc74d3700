"""Entity model: the three record kinds and their row codecs.

Each kind carries the table layout the store needs (table name, column
order, key columns, owner column, DDL) next to `to_row` / `from_row`, so the
database layer can stay generic over the closed set in ENTITY_KINDS.
Binary values are stored as base64 text; decoding problems surface as
CorruptRow.
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Optional, Tuple, Type, Union
from config.settings import NONCE_LENGTH
from .crypto import Envelope
from .errors import CorruptRow
from .utils import b64encode, b64decode, check_name


def _text(value) -> str:
	if not isinstance(value, str):
		raise TypeError(f'Expected text, got {type(value).__name__}')
	return value

def _nonce(value) -> bytes:
	nonce = b64decode(value)
	if len(nonce) != NONCE_LENGTH:
		raise ValueError(f'Nonce must be {NONCE_LENGTH} bytes, got {len(nonce)}')
	return nonce

def _envelope(row, prefix: str) -> Envelope:
	return Envelope(b64decode(row[f'{prefix}_b64']), _nonce(row[f'{prefix}_nonce']))

def _decoding(kind, row, build):
	try:
		return build(row)
	except (ValueError, TypeError, KeyError, IndexError) as e:
		raise CorruptRow(f'Bad {kind.TABLE} row: {e}') from e


@dataclass
class Account:
	TABLE: ClassVar[str] = 'accounts'
	COLUMNS: ClassVar[Tuple[str, ...]] = (
		'username', 'password_verifier', 'key_salt',
		'data_key_envelope_ciphertext', 'data_key_envelope_nonce',
	)
	KEY_COLUMNS: ClassVar[Tuple[str, ...]] = ('username',)
	OWNER_COLUMN: ClassVar[Optional[str]] = None
	SCHEMA: ClassVar[str] = """
		CREATE TABLE IF NOT EXISTS accounts (
			username TEXT PRIMARY KEY NOT NULL,
			password_verifier TEXT NOT NULL,
			key_salt TEXT NOT NULL,
			data_key_envelope_ciphertext TEXT NOT NULL,
			data_key_envelope_nonce TEXT NOT NULL
		)
	"""

	username: str
	password_verifier: str
	key_salt: bytes
	data_key_envelope: Envelope

	def key(self) -> tuple:
		return (self.username,)

	def to_row(self) -> tuple:
		return (
			self.username, self.password_verifier, b64encode(self.key_salt),
			b64encode(self.data_key_envelope.cipherbytes), b64encode(self.data_key_envelope.nonce),
		)

	@classmethod
	def from_row(cls, row) -> 'Account':
		return _decoding(cls, row, lambda r: cls(
			username=_text(r['username']),
			password_verifier=_text(r['password_verifier']),
			key_salt=b64decode(r['key_salt']),
			data_key_envelope=Envelope(
				b64decode(r['data_key_envelope_ciphertext']), _nonce(r['data_key_envelope_nonce'])
			),
		))


@dataclass
class Credential:
	"""A login record; every field is ciphertext under the owner's DEK.

	`encrypted_name` is encrypted with a nonce derived from the name itself, so
	it doubles as the lookup key. The other fields use random nonces.
	"""
	TABLE: ClassVar[str] = 'credentials'
	COLUMNS: ClassVar[Tuple[str, ...]] = (
		'owner_username',
		'encrypted_name_b64', 'encrypted_name_nonce',
		'encrypted_login_username_b64', 'encrypted_login_username_nonce',
		'encrypted_password_b64', 'encrypted_password_nonce',
		'encrypted_notes_b64', 'encrypted_notes_nonce',
	)
	KEY_COLUMNS: ClassVar[Tuple[str, ...]] = ('owner_username', 'encrypted_name_b64')
	OWNER_COLUMN: ClassVar[Optional[str]] = 'owner_username'
	SCHEMA: ClassVar[str] = """
		CREATE TABLE IF NOT EXISTS credentials (
			owner_username TEXT NOT NULL,
			encrypted_name_b64 TEXT NOT NULL,
			encrypted_name_nonce TEXT NOT NULL,
			encrypted_login_username_b64 TEXT NOT NULL,
			encrypted_login_username_nonce TEXT NOT NULL,
			encrypted_password_b64 TEXT NOT NULL,
			encrypted_password_nonce TEXT NOT NULL,
			encrypted_notes_b64 TEXT NOT NULL,
			encrypted_notes_nonce TEXT NOT NULL,
			PRIMARY KEY (owner_username, encrypted_name_b64),
			FOREIGN KEY (owner_username) REFERENCES accounts (username)
		)
	"""

	owner_username: str
	encrypted_name: Envelope
	encrypted_login_username: Envelope
	encrypted_password: Envelope
	encrypted_notes: Envelope

	def key(self) -> tuple:
		return (self.owner_username, self.encrypted_name)

	def to_row(self) -> tuple:
		row = [self.owner_username]
		for env in (self.encrypted_name, self.encrypted_login_username, self.encrypted_password, self.encrypted_notes):
			row += [b64encode(env.cipherbytes), b64encode(env.nonce)]
		return tuple(row)

	@classmethod
	def from_row(cls, row) -> 'Credential':
		return _decoding(cls, row, lambda r: cls(
			owner_username=_text(r['owner_username']),
			encrypted_name=_envelope(r, 'encrypted_name'),
			encrypted_login_username=_envelope(r, 'encrypted_login_username'),
			encrypted_password=_envelope(r, 'encrypted_password'),
			encrypted_notes=_envelope(r, 'encrypted_notes'),
		))


@dataclass
class DecryptedCredential:
	name: str
	login_username: str
	password: str
	notes: str


@dataclass
class FileData:
	"""Where an encrypted file lives and the nonce of its on-disk content.

	`path` is relative to the vault's data directory and is always
	`<owner_username>/<filename>`, so a copied vault keeps pointing at its
	own files.
	"""
	TABLE: ClassVar[str] = 'files_data'
	COLUMNS: ClassVar[Tuple[str, ...]] = ('path', 'filename', 'owner_username', 'contents_nonce')
	KEY_COLUMNS: ClassVar[Tuple[str, ...]] = ('path',)
	OWNER_COLUMN: ClassVar[Optional[str]] = 'owner_username'
	SCHEMA: ClassVar[str] = """
		CREATE TABLE IF NOT EXISTS files_data (
			path TEXT PRIMARY KEY NOT NULL,
			filename TEXT NOT NULL,
			owner_username TEXT NOT NULL,
			contents_nonce TEXT NOT NULL,
			FOREIGN KEY (owner_username) REFERENCES accounts (username)
		)
	"""

	path: Path
	filename: str
	owner_username: str
	contents_nonce: bytes

	def key(self) -> tuple:
		return (self.path,)

	def to_row(self) -> tuple:
		return (self.path.as_posix(), self.filename, self.owner_username, b64encode(self.contents_nonce))

	@classmethod
	def from_row(cls, row) -> 'FileData':
		def build(r):
			fd = cls(
				path=Path(_text(r['path'])),
				filename=_text(r['filename']),
				owner_username=_text(r['owner_username']),
				contents_nonce=_nonce(r['contents_nonce']),
			)
			if fd.path != file_key(fd.owner_username, fd.filename):
				raise ValueError(f'path {fd.path} does not match {fd.owner_username}/{fd.filename}')
			return fd
		return _decoding(cls, row, build)


def file_key(owner_username: str, filename: str) -> Path:
	"""Data-dir relative location of a file, also its FileData key."""
	return Path(check_name(owner_username, 'username')) / check_name(filename, 'filename')


Entity = Union[Account, Credential, FileData]
EntityKind = Type[Entity]
ENTITY_KINDS: Tuple[EntityKind, ...] = (Account, Credential, FileData)
