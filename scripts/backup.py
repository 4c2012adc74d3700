"""Simple backup utility script.

Usage (from repo root):
  python -m scripts.backup --dest backups/
"""
from __future__ import annotations
from pathlib import Path
import click
from config import settings
from dgruft.lib.errors import VaultError
from dgruft.lib.vault import Vault

@click.command()
@click.option('--dest', type=click.Path(file_okay=False, path_type=Path), default=Path('backups'), help='Destination directory for backups.')
def main(dest: Path):
	db_path = settings.db_path()
	if not db_path.exists():
		click.echo(f"No vault at {db_path}; nothing to backup.")
		raise SystemExit(1)
	try:
		with Vault.connect(db_path, settings.data_dir()) as vault:
			target = vault.backup(dest)
	except VaultError as e:
		raise click.ClickException(str(e)) from e
	click.echo(f"Backup written: {target}")

if __name__ == '__main__':  # pragma: no cover
	main()
