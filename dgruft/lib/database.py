"""Relational storage layer over SQLite.

One connection per Database, opened in autocommit mode so transactions are
begun and ended explicitly through Transaction objects. Foreign keys are not
enforced by SQLite unless asked for, so connect() turns them on and checks
that they stuck.
"""
from __future__ import annotations
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Dict, List, Optional
from .crypto import Envelope
from .errors import ConstraintViolation, NotFound, StorageError, TransactionFailure
from .models import ENTITY_KINDS, Entity, EntityKind
from .utils import b64encode

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Statements:
	select: str
	select_all: str
	select_owned: Optional[str]
	insert: str
	update: str
	delete: str


def _statements_for(kind: EntityKind) -> Statements:
	cols = ', '.join(kind.COLUMNS)
	where = ' AND '.join(f'{c} = ?' for c in kind.KEY_COLUMNS)
	assign = ', '.join(f'{c} = ?' for c in kind.COLUMNS if c not in kind.KEY_COLUMNS)
	marks = ', '.join('?' for _ in kind.COLUMNS)
	order = ', '.join(kind.KEY_COLUMNS)
	return Statements(
		select=f'SELECT {cols} FROM {kind.TABLE} WHERE {where}',
		select_all=f'SELECT {cols} FROM {kind.TABLE} ORDER BY {order}',
		select_owned=(
			f'SELECT {cols} FROM {kind.TABLE} WHERE {kind.OWNER_COLUMN} = ? ORDER BY {order}'
			if kind.OWNER_COLUMN else None
		),
		insert=f'INSERT INTO {kind.TABLE} ({cols}) VALUES ({marks})',
		update=f'UPDATE {kind.TABLE} SET {assign} WHERE {where}',
		delete=f'DELETE FROM {kind.TABLE} WHERE {where}',
	)

STATEMENTS: Dict[EntityKind, Statements] = {kind: _statements_for(kind) for kind in ENTITY_KINDS}


def encode_key(value) -> str:
	"""Bind-safe text for one key element; binary values go through base64."""
	if isinstance(value, Envelope):
		return b64encode(value.cipherbytes)
	if isinstance(value, (bytes, bytearray, memoryview)):
		return b64encode(bytes(value))
	if isinstance(value, PurePath):
		return value.as_posix()
	if isinstance(value, str):
		return value
	raise TypeError(f'Unsupported key element type: {type(value).__name__}')


class Transaction:
	"""An open store transaction. Usable once; commit or rollback ends it.

	As a context manager it commits on normal exit and rolls back if the
	block raises.
	"""

	def __init__(self, db: 'Database'):
		self._db = db
		self.active = True

	def __enter__(self) -> 'Transaction':
		return self

	def __exit__(self, exc_type, exc, tb) -> None:
		if not self.active:
			return
		if exc_type is None:
			self.commit()
		else:
			self.rollback()

	def commit(self) -> None:
		self._db._finish(self, 'COMMIT')

	def rollback(self) -> None:
		self._db._finish(self, 'ROLLBACK')


class Database:
	def __init__(self, path: Path, connection: sqlite3.Connection):
		self.path = path
		self._conn = connection
		self._tx: Optional[Transaction] = None

	@classmethod
	def connect(cls, path) -> 'Database':
		"""Open (creating if needed) the database at `path` and ensure the schema."""
		path = Path(path)
		try:
			path.parent.mkdir(parents=True, exist_ok=True)
			conn = sqlite3.connect(str(path), isolation_level=None)
		except (OSError, sqlite3.Error) as e:
			raise StorageError(f'Cannot open database {path}: {e}') from e
		try:
			conn.row_factory = sqlite3.Row
			conn.execute('PRAGMA foreign_keys = ON')
			if conn.execute('PRAGMA foreign_keys').fetchone()[0] != 1:
				raise StorageError('SQLite build does not enforce foreign keys')
			for kind in ENTITY_KINDS:
				conn.execute(kind.SCHEMA)
		except sqlite3.Error as e:
			conn.close()
			raise StorageError(f'Cannot initialise database {path}: {e}') from e
		except StorageError:
			conn.close()
			raise
		log.debug('Connected to %s', path)
		return cls(path, conn)

	def close(self) -> None:
		try:
			if self._tx is not None and self._tx.active:
				log.warning('Closing %s with an open transaction; rolling back', self.path)
				self._tx.rollback()
		finally:
			self._conn.close()

	def __enter__(self) -> 'Database':
		return self

	def __exit__(self, *exc) -> None:
		self.close()

	@property
	def in_transaction(self) -> bool:
		return self._tx is not None and self._tx.active

	# -- generic entity operations --

	def select(self, kind: EntityKind, *key) -> Optional[Entity]:
		"""Row for `key` decoded as `kind`, or None when no row matches."""
		stmts = self._statements(kind)
		row = self._execute(stmts.select, self._key_params(kind, key)).fetchone()
		return kind.from_row(row) if row is not None else None

	def select_all(self, kind: EntityKind) -> List[Entity]:
		rows = self._execute(self._statements(kind).select_all, ()).fetchall()
		return [kind.from_row(r) for r in rows]

	def select_owned(self, kind: EntityKind, owner_username: str) -> List[Entity]:
		sql = self._statements(kind).select_owned
		if sql is None:
			raise TypeError(f'{kind.__name__} rows have no owner')
		return [kind.from_row(r) for r in self._execute(sql, (owner_username,)).fetchall()]

	def insert(self, entity: Entity) -> None:
		self._execute(self._statements(type(entity)).insert, entity.to_row())

	def update(self, entity: Entity) -> None:
		kind = type(entity)
		values = dict(zip(kind.COLUMNS, entity.to_row()))
		params = [values[c] for c in kind.COLUMNS if c not in kind.KEY_COLUMNS]
		params += [values[c] for c in kind.KEY_COLUMNS]
		cur = self._execute(self._statements(kind).update, params)
		if cur.rowcount == 0:
			raise NotFound(f'No {kind.TABLE} row to update for key {entity.key()!r}')

	def delete(self, kind: EntityKind, *key) -> None:
		cur = self._execute(self._statements(kind).delete, self._key_params(kind, key))
		if cur.rowcount == 0:
			raise NotFound(f'No {kind.TABLE} row for key {key!r}')

	# -- transactions --

	def begin_transaction(self) -> Transaction:
		if self.in_transaction:
			raise TransactionFailure('A transaction is already open')
		try:
			self._conn.execute('BEGIN IMMEDIATE')
		except sqlite3.Error as e:
			raise TransactionFailure(f'BEGIN failed: {e}') from e
		self._tx = Transaction(self)
		return self._tx

	def commit(self, tx: Transaction) -> None:
		tx.commit()

	def rollback(self, tx: Transaction) -> None:
		tx.rollback()

	def _finish(self, tx: Transaction, verb: str) -> None:
		if tx is not self._tx or not tx.active:
			raise TransactionFailure(f'{verb} on a transaction that is not open')
		tx.active = False
		self._tx = None
		try:
			self._conn.execute(verb)
		except sqlite3.Error as e:
			if self._conn.in_transaction:
				try:
					self._conn.execute('ROLLBACK')
				except sqlite3.Error as e2:
					log.error('ROLLBACK after failed %s also failed: %s', verb, e2)
			raise TransactionFailure(f'{verb} failed: {e}') from e

	# -- maintenance --

	def backup(self, dest) -> Path:
		"""Online copy of the database into `dest`."""
		if self.in_transaction:
			raise StorageError('Cannot back up while a transaction is open')
		dest = Path(dest)
		dest.parent.mkdir(parents=True, exist_ok=True)
		target = sqlite3.connect(str(dest))
		try:
			self._conn.backup(target)
		except sqlite3.Error as e:
			raise StorageError(f'Backup to {dest} failed: {e}') from e
		finally:
			target.close()
		return dest

	# -- helpers --

	@staticmethod
	def _statements(kind) -> Statements:
		try:
			return STATEMENTS[kind]
		except (KeyError, TypeError):
			raise TypeError(f'Not a vault entity kind: {kind!r}') from None

	@staticmethod
	def _key_params(kind: EntityKind, key: tuple) -> tuple:
		if len(key) != len(kind.KEY_COLUMNS):
			raise ValueError(f'{kind.__name__} key needs {len(kind.KEY_COLUMNS)} element(s), got {len(key)}')
		return tuple(encode_key(k) for k in key)

	def _execute(self, sql: str, params) -> sqlite3.Cursor:
		try:
			return self._conn.execute(sql, params)
		except sqlite3.IntegrityError as e:
			raise ConstraintViolation(str(e)) from e
		except sqlite3.Error as e:
			raise StorageError(str(e)) from e
