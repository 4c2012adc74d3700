"""Project configuration settings.

Constants shared by the vault engine and the CLI. Paths are resolved when
asked for so environment overrides set after import (tests) are honoured.
"""

from pathlib import Path
import os

# Security / crypto
DEFAULT_ITERATIONS = 100_000  # PBKDF2 iterations
SALT_LENGTH = 32
KEY_LENGTH = 32    # AES-256
NONCE_LENGTH = 12  # GCM nonce
AUTH_TAG_LENGTH = 16  # GCM tag length
BCRYPT_ROUNDS = 12

# Vault
DEFAULT_DB_PATH = Path("vault_data/dgruft.db")
DEFAULT_DATA_DIR = Path("vault_data/files")
TOMBSTONE_SUFFIX = ".deleting"

# Backup
BACKUP_SUFFIX = ".backup"

# Logging
LOG_LEVEL = os.environ.get("DGRUFT_LOG_LEVEL", "WARNING")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def db_path() -> Path:
	env_path = os.environ.get("DGRUFT_DB_PATH")
	return Path(env_path) if env_path else DEFAULT_DB_PATH


def data_dir() -> Path:
	env_path = os.environ.get("DGRUFT_DATA_DIR")
	return Path(env_path) if env_path else DEFAULT_DATA_DIR


__all__ = [
	'DEFAULT_ITERATIONS','SALT_LENGTH','KEY_LENGTH','NONCE_LENGTH','AUTH_TAG_LENGTH','BCRYPT_ROUNDS',
	'DEFAULT_DB_PATH','DEFAULT_DATA_DIR','TOMBSTONE_SUFFIX','BACKUP_SUFFIX','LOG_LEVEL','LOG_FORMAT',
	'db_path','data_dir'
]
