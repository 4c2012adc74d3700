"""Vault orchestrator: accounts, credentials and encrypted files.

Operations that change both the database and the data directory run as a
small saga (see `Vault._run`):

1. open a store transaction and apply the row changes; if that fails,
   roll back and re-raise without touching the filesystem;
2. apply the filesystem plan: stage removals (rename aside), then write new
   content atomically;
3. if the filesystem step fails or is interrupted, undo it (drop new files,
   rename staged ones back) and roll back the store; OSError surfaces as
   IOFailure, anything else (KeyboardInterrupt) propagates as is;
4. otherwise commit, then purge what was staged.

This makes the pair atomic against failing operations. It does not cover a
process crash between step 2 and the commit.
"""
from __future__ import annotations
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple
from config.settings import DEFAULT_ITERATIONS, BACKUP_SUFFIX, TOMBSTONE_SUFFIX, db_path, data_dir
from .auth import UnlockedAccount, register, rewrap, unlock
from .crypto import Envelope
from .database import Database
from .errors import ConstraintViolation, CorruptRow, IOFailure, NotFound, TransactionFailure
from .models import Account, Credential, EntityKind, FileData, file_key
from .utils import check_name, purge, remove_empty_dir, restore_staged, stage_removal, write_atomic

log = logging.getLogger(__name__)


@dataclass
class FilesystemPlan:
	writes: Dict[Path, bytes] = field(default_factory=dict)
	removals: List[Path] = field(default_factory=list)


class Vault:
	"""An open database connection plus the directory holding file contents."""

	def __init__(self, db: Database, data_dir: Path, iterations: int = DEFAULT_ITERATIONS):
		self.db = db
		self.data_dir = Path(data_dir).absolute()
		self.iterations = iterations

	@classmethod
	def connect(cls, db_location=None, data_location=None, iterations: int = DEFAULT_ITERATIONS) -> 'Vault':
		"""Open the vault; locations default to the configured (env-overridable) paths."""
		root = Path(data_location) if data_location is not None else data_dir()
		try:
			root.mkdir(parents=True, exist_ok=True)
		except OSError as e:
			raise IOFailure(f'Cannot create data directory {root}: {e}') from e
		db = Database.connect(db_location if db_location is not None else db_path())
		return cls(db, root, iterations)

	def close(self) -> None:
		self.db.close()

	def __enter__(self) -> 'Vault':
		return self

	def __exit__(self, *exc) -> None:
		self.close()

	# -- accounts --

	def create_account(self, username: str, password: str) -> Account:
		check_name(username, 'username')
		if self.db.select(Account, username) is not None:
			raise ConstraintViolation(f'Account {username} already exists')
		account = register(username, password, self.iterations)
		self.db.insert(account)
		log.info('Created account %s', username)
		return account

	def load_account(self, username: str) -> Account:
		account = self.db.select(Account, username)
		if account is None:
			raise NotFound(f'No account named {username}')
		return account

	def load_unlocked_account(self, username: str, password: str) -> UnlockedAccount:
		return unlock(self.load_account(username), password, self.iterations)

	def change_password(self, username: str, old_password: str, new_password: str) -> None:
		"""Re-wrap the account's DEK; owned records stay as they are."""
		account = rewrap(self.load_account(username), old_password, new_password, self.iterations)
		self.db.update(account)
		log.info('Changed password for account %s', username)

	def delete_account(self, username: str) -> None:
		"""Delete an account with all its credentials, file rows and files on disk."""
		def rows() -> FilesystemPlan:
			if self.db.select(Account, username) is None:
				raise NotFound(f'No account named {username}')
			files = self.db.select_owned(FileData, username)
			for cred in self.db.select_owned(Credential, username):
				self.db.delete(Credential, *cred.key())
			for fd in files:
				self.db.delete(FileData, *fd.key())
			self.db.delete(Account, username)
			return FilesystemPlan(removals=[self.locate(fd) for fd in files])

		self._run(f'delete account {username}', rows)
		remove_empty_dir(self.data_dir / username)
		log.info('Deleted account %s', username)

	# -- listing --

	def load_all_of_kind(self, kind: EntityKind) -> list:
		return self.db.select_all(kind)

	load_all = load_all_of_kind

	def load_account_credentials(self, username: str) -> List[Credential]:
		return self.db.select_owned(Credential, username)

	def load_account_files(self, username: str) -> List[FileData]:
		return self.db.select_owned(FileData, username)

	# -- credentials --

	def insert_credential(self, session: UnlockedAccount, name: str, login_username: str = '',
			password: str = '', notes: str = '') -> Credential:
		cred = Credential(
			owner_username=session.username,
			encrypted_name=session.encrypt_name(name),
			encrypted_login_username=session.encrypt_field(login_username),
			encrypted_password=session.encrypt_field(password),
			encrypted_notes=session.encrypt_field(notes),
		)
		self.db.insert(cred)
		log.info('Added credential for %s', session.username)
		return cred

	def select_credential(self, session: UnlockedAccount, name: str) -> Optional[Credential]:
		return self.db.select(Credential, session.username, session.encrypt_name(name))

	def update_credential(self, session: UnlockedAccount, name: str, login_username: Optional[str] = None,
			password: Optional[str] = None, notes: Optional[str] = None) -> Credential:
		"""Re-encrypt the given fields (fresh nonces); None leaves a field unchanged."""
		cred = self.select_credential(session, name)
		if cred is None:
			raise NotFound(f'{session.username} has no credential with that name')
		if login_username is not None:
			cred.encrypted_login_username = session.encrypt_field(login_username)
		if password is not None:
			cred.encrypted_password = session.encrypt_field(password)
		if notes is not None:
			cred.encrypted_notes = session.encrypt_field(notes)
		self.db.update(cred)
		return cred

	def delete_credential(self, owner_username: str, encrypted_name) -> None:
		"""Delete by raw key: owner plus the name envelope (or its cipherbytes)."""
		self.db.delete(Credential, owner_username, encrypted_name)
		log.info('Deleted credential of %s', owner_username)

	# -- files --

	def file_path(self, owner_username: str, filename: str) -> Path:
		return self.data_dir / file_key(owner_username, filename)

	def locate(self, fd: FileData) -> Path:
		"""On-disk location of a file row, refusing anything outside the data directory."""
		path = self.data_dir / fd.path
		if not path.resolve().is_relative_to(self.data_dir.resolve()):
			raise CorruptRow(f'File row {fd.path} points outside {self.data_dir}')
		return path

	def select_file(self, owner_username: str, filename: str) -> Optional[FileData]:
		return self.db.select(FileData, file_key(owner_username, filename))

	def _require_file(self, owner_username: str, filename: str) -> FileData:
		fd = self.select_file(owner_username, filename)
		if fd is None:
			raise NotFound(f'{owner_username} has no file named {filename}')
		return fd

	def insert_file(self, session: UnlockedAccount, filename: str, contents: bytes) -> FileData:
		path = self.file_path(session.username, filename)
		envelope = session.encrypt_bytes(contents)
		fd = FileData(file_key(session.username, filename), filename, session.username, envelope.nonce)

		def rows() -> FilesystemPlan:
			self.db.insert(fd)
			if path.exists():
				raise ConstraintViolation(f'{path} already exists on disk without a file row')
			return FilesystemPlan(writes={path: envelope.cipherbytes})

		self._run(f'insert file {path}', rows)
		log.info('Stored file %s for %s', filename, session.username)
		return fd

	def load_file_contents(self, session: UnlockedAccount, filename: str) -> bytes:
		fd = self._require_file(session.username, filename)
		path = self.locate(fd)
		try:
			cipherbytes = path.read_bytes()
		except OSError as e:
			raise IOFailure(f'Cannot read {path}: {e}') from e
		return session.decrypt_bytes(Envelope(cipherbytes, fd.contents_nonce))

	def update_file(self, session: UnlockedAccount, filename: str, contents: bytes) -> FileData:
		"""Replace a file's content under a fresh nonce."""
		current = self._require_file(session.username, filename)
		path = self.locate(current)
		envelope = session.encrypt_bytes(contents)
		fd = FileData(current.path, current.filename, current.owner_username, envelope.nonce)

		def rows() -> FilesystemPlan:
			self.db.update(fd)
			return FilesystemPlan(writes={path: envelope.cipherbytes}, removals=[path])

		self._run(f'update file {path}', rows)
		return fd

	def delete_file(self, owner_username: str, filename: str) -> None:
		key = file_key(owner_username, filename)
		path = self.data_dir / key

		def rows() -> FilesystemPlan:
			self.db.delete(FileData, key)
			return FilesystemPlan(removals=[path])

		self._run(f'delete file {path}', rows)
		log.info('Deleted file %s of %s', filename, owner_username)


	# -- maintenance --

	def backup(self, dest_dir) -> Path:
		"""Snapshot the database and the data directory into a new folder under `dest_dir`."""
		stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
		target = Path(dest_dir) / f'dgruft_{stamp}{BACKUP_SUFFIX}'
		self.db.backup(target / self.db.path.name)
		try:
			shutil.copytree(
				self.data_dir, target / 'files', dirs_exist_ok=True,
				ignore=shutil.ignore_patterns(f'*{TOMBSTONE_SUFFIX}', '*.tmp'),
			)
		except (OSError, shutil.Error) as e:
			raise IOFailure(f'Cannot copy {self.data_dir} to {target}: {e}') from e
		log.info('Vault backed up to %s', target)
		return target

	# -- cross-resource protocol --

	def _run(self, what: str, rows: Callable[[], FilesystemPlan]) -> None:
		tx = self.db.begin_transaction()
		try:
			plan = rows()
		except BaseException:
			log.warning('%s: store step failed; rolling back', what)
			tx.rollback()
			raise

		staged: List[Tuple[Path, Path]] = []
		written: List[Path] = []
		try:
			for path in plan.removals:
				tombstone = stage_removal(path)
				if tombstone is not None:
					staged.append((tombstone, path))
			for path, data in plan.writes.items():
				# recorded first so an interrupted write is still cleaned up
				written.append(path)
				write_atomic(path, data)
		except BaseException as e:
			log.warning('%s: filesystem step failed (%r); rolling back', what, e)
			self._undo(staged, written)
			tx.rollback()
			if isinstance(e, OSError):
				raise IOFailure(f'{what}: {e}') from e
			raise

		try:
			tx.commit()
		except TransactionFailure:
			log.critical('%s: commit failed after filesystem changes; restoring files', what)
			self._undo(staged, written)
			raise

		for tombstone, _ in staged:
			try:
				purge(tombstone)
			except OSError as e:
				log.warning('%s: committed, but could not purge %s: %s', what, tombstone, e)

	@staticmethod
	def _undo(staged: List[Tuple[Path, Path]], written: List[Path]) -> None:
		for path in reversed(written):
			try:
				purge(path)
			except OSError as e:
				log.error('Could not remove %s while undoing: %s', path, e)
		for tombstone, original in reversed(staged):
			try:
				restore_staged(tombstone, original)
			except OSError as e:
				log.error('Could not restore %s from %s: %s', original, tombstone, e)
