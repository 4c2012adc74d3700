"""Utility layer: text-safe encoding of binary values and filesystem steps.

The filesystem helpers are the irreversible half of the vault's
cross-resource operations, so each one is shaped to be undoable or
harmless to repeat:
- writes go through a temp file and `os.replace`, never leaving a torn file;
- removals are staged by renaming to a hidden tombstone beside the original,
  which can be renamed back until it is purged;
- removing something already gone counts as success.
"""
from __future__ import annotations
import base64, binascii, logging, os, uuid
from pathlib import Path
from typing import Optional
from config.settings import TOMBSTONE_SUFFIX

log = logging.getLogger(__name__)

_FORBIDDEN = ('/', '\\', '\x00')


def b64encode(data: bytes) -> str:
	return base64.b64encode(data).decode('ascii')

def b64decode(text: str) -> bytes:
	"""Strict inverse of b64encode; raises ValueError on anything it did not produce."""
	if not isinstance(text, str):
		raise ValueError(f'Expected base64 text, got {type(text).__name__}')
	try:
		return base64.b64decode(text.encode('ascii'), validate=True)
	except (binascii.Error, UnicodeEncodeError) as e:
		raise ValueError(f'Invalid base64: {e}') from e


def check_name(name: str, what: str = 'name') -> str:
	"""Reject names that cannot be used as a single path component."""
	if not name or name in ('.', '..') or any(c in name for c in _FORBIDDEN):
		raise ValueError(f'Invalid {what}: {name!r}')
	return name


def write_atomic(path: Path, data: bytes) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	tmp = path.with_name(f'.{path.name}.{uuid.uuid4().hex}.tmp')
	try:
		tmp.write_bytes(data)
		os.replace(tmp, path)
	except OSError:
		tmp.unlink(missing_ok=True)
		raise


def stage_removal(path: Path) -> Optional[Path]:
	"""Move `path` aside; returns the tombstone, or None if it was already gone."""
	tombstone = path.with_name(f'.{path.name}.{uuid.uuid4().hex}{TOMBSTONE_SUFFIX}')
	try:
		os.replace(path, tombstone)
	except FileNotFoundError:
		log.debug('Nothing to stage at %s', path)
		return None
	return tombstone


def restore_staged(tombstone: Path, path: Path) -> None:
	os.replace(tombstone, path)


def purge(path: Path) -> None:
	path.unlink(missing_ok=True)


def remove_empty_dir(path: Path) -> None:
	try:
		path.rmdir()
	except FileNotFoundError:
		pass
	except OSError as e:
		log.debug('Leaving %s in place: %s', path, e)
