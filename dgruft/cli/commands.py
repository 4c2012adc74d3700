"""CLI commands implemented with click.

Every command opens the vault at the configured location (DGRUFT_DB_PATH /
DGRUFT_DATA_DIR), does one operation and closes it again. Account passwords
are prompted for; destructive commands ask for confirmation unless --force.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from pathlib import Path
import click
from config.settings import LOG_LEVEL, LOG_FORMAT
from dgruft.lib.errors import VaultError
from dgruft.lib.models import Account
from dgruft.lib.vault import Vault

_password = click.option('--password', prompt=True, hide_input=True, help='Account password.')


@contextmanager
def _vault():
	try:
		with Vault.connect() as vault:
			yield vault
	except (VaultError, ValueError) as e:
		raise click.ClickException(str(e)) from e


@click.group()
@click.option('--verbose', is_flag=True, help='Log debug output to stderr.')
def cli(verbose):
	"""dgruft: encrypted credential and file vault"""
	logging.basicConfig(level=logging.DEBUG if verbose else LOG_LEVEL, format=LOG_FORMAT)


# --- accounts ---

@cli.command('new-account')
@click.argument('username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
def new_account(username, password):
	"""Create a new account."""
	with _vault() as v:
		v.create_account(username, password)
	click.echo(f'Account {username} created.')

@cli.command('list-accounts')
def list_accounts():
	with _vault() as v:
		for account in v.load_all(Account):
			click.echo(account.username)

@cli.command('delete-account')
@click.argument('username')
@_password
@click.option('--force', is_flag=True, help='Do not ask for confirmation.')
def delete_account(username, password, force):
	"""Delete an account along with all its credentials and files."""
	with _vault() as v:
		with v.load_unlocked_account(username, password):
			creds = v.load_account_credentials(username)
			files = v.load_account_files(username)
		if not force and not click.confirm(
			f'Really delete account {username} with {len(creds)} credential(s) & {len(files)} file(s)?'
		):
			click.echo('Account deletion cancelled.')
			return
		v.delete_account(username)
	click.echo(f'Account {username} deleted.')

@cli.command('passwd')
@click.argument('username')
@_password
@click.option('--new-password', prompt=True, hide_input=True, confirmation_prompt=True)
def passwd(username, password, new_password):
	"""Change an account's password."""
	with _vault() as v:
		v.change_password(username, password, new_password)
	click.echo('Password changed.')


# --- credentials ---

@cli.command('new-credential')
@click.argument('username')
@click.argument('name')
@_password
@click.option('--login-username', prompt=True, default='', show_default=False)
@click.option('--secret', prompt=True, hide_input=True, default='', show_default=False, help='Password to store.')
@click.option('--notes', prompt=True, default='', show_default=False)
def new_credential(username, name, password, login_username, secret, notes):
	with _vault() as v, v.load_unlocked_account(username, password) as s:
		v.insert_credential(s, name, login_username, secret, notes)
	click.echo(f'Credential {name} created.')

@cli.command('open-credential')
@click.argument('username')
@click.argument('name')
@_password
def open_credential(username, name, password):
	"""Show a decrypted credential."""
	with _vault() as v, v.load_unlocked_account(username, password) as s:
		cred = v.select_credential(s, name)
		if cred is None:
			raise click.ClickException(f'No credential named {name}')
		plain = s.decrypt_credential(cred)
	click.echo(f"Name: {plain.name}\nUsername: {plain.login_username}\nPassword: {plain.password}\n---\n{plain.notes}")

@cli.command('edit-credential')
@click.argument('username')
@click.argument('name')
@_password
@click.option('--login-username', default=None)
@click.option('--secret', default=None, help='New password to store.')
@click.option('--notes', default=None)
def edit_credential(username, name, password, login_username, secret, notes):
	"""Change the given fields of a credential."""
	with _vault() as v, v.load_unlocked_account(username, password) as s:
		v.update_credential(s, name, login_username, secret, notes)
	click.echo(f'Credential {name} updated.')

@cli.command('list-credentials')
@click.argument('username')
@_password
def list_credentials(username, password):
	with _vault() as v, v.load_unlocked_account(username, password) as s:
		names = sorted(s.decrypt_field(c.encrypted_name) for c in v.load_account_credentials(username))
	for name in names:
		click.echo(name)

@cli.command('delete-credential')
@click.argument('username')
@click.argument('name')
@_password
@click.option('--force', is_flag=True, help='Do not ask for confirmation.')
def delete_credential(username, name, password, force):
	with _vault() as v, v.load_unlocked_account(username, password) as s:
		key = s.encrypt_name(name)
		if not force and not click.confirm(f'Really delete credential {name}?'):
			click.echo('Credential deletion cancelled.')
			return
		v.delete_credential(username, key)
	click.echo(f'Credential {name} deleted.')


# --- files ---

@cli.command('new-file')
@click.argument('username')
@click.argument('filename')
@_password
@click.option('--source', type=click.File('rb'), default='-', help='Read contents from this file (default stdin).')
def new_file(username, filename, password, source):
	"""Encrypt contents into a new vault file."""
	contents = source.read()
	with _vault() as v, v.load_unlocked_account(username, password) as s:
		v.insert_file(s, filename, contents)
	click.echo(f'File {filename} stored.')

@cli.command('open-file')
@click.argument('username')
@click.argument('filename')
@_password
@click.option('--out', type=click.File('wb'), default='-', help='Write plaintext here (default stdout).')
def open_file(username, filename, password, out):
	with _vault() as v, v.load_unlocked_account(username, password) as s:
		contents = v.load_file_contents(s, filename)
	out.write(contents)

@cli.command('list-files')
@click.argument('username')
@_password
def list_files(username, password):
	with _vault() as v:
		with v.load_unlocked_account(username, password):
			files = v.load_account_files(username)
	for fd in files:
		click.echo(fd.filename)

@cli.command('delete-file')
@click.argument('username')
@click.argument('filename')
@_password
@click.option('--force', is_flag=True, help='Do not ask for confirmation.')
def delete_file(username, filename, password, force):
	with _vault() as v:
		v.load_unlocked_account(username, password).close()
		if not force and not click.confirm(f'Really delete file {filename}?'):
			click.echo('File deletion cancelled.')
			return
		v.delete_file(username, filename)
	click.echo(f'File {filename} deleted.')


@cli.command('backup')
@click.option('--dest', type=click.Path(file_okay=False, path_type=Path), default=Path('backups'),
	help='Directory to write the snapshot into.')
def backup(dest):
	"""Snapshot the database and data directory."""
	with _vault() as v:
		target = v.backup(dest)
	click.echo(f'Backup written: {target}')
