from click.testing import CliRunner
from dgruft.cli.commands import cli

def new_account(runner, name='mr_test', pw='pw'):
    return runner.invoke(cli, ['new-account', name], input=f'{pw}\n{pw}\n')

def test_cli_account_lifecycle(cli_env):
    runner = CliRunner()
    r = new_account(runner)
    assert r.exit_code == 0
    assert 'Account mr_test created' in r.output
    dup = new_account(runner)
    assert dup.exit_code != 0
    assert 'already exists' in dup.output
    lst = runner.invoke(cli, ['list-accounts'])
    assert lst.output.split() == ['mr_test']
    cancel = runner.invoke(cli, ['delete-account', 'mr_test', '--password', 'pw'], input='n\n')
    assert 'cancelled' in cancel.output
    gone = runner.invoke(cli, ['delete-account', 'mr_test', '--password', 'pw', '--force'])
    assert gone.exit_code == 0
    assert runner.invoke(cli, ['list-accounts']).output.strip() == ''

def test_cli_wrong_password(cli_env):
    runner = CliRunner()
    new_account(runner)
    r = runner.invoke(cli, ['list-credentials', 'mr_test'], input='nope\n')
    assert r.exit_code != 0
    assert 'Error: Wrong password' in r.output

def test_cli_credentials(cli_env):
    runner = CliRunner()
    new_account(runner)
    add = runner.invoke(cli, ['new-credential', 'mr_test', 'github'], input='pw\nocto\ns3cret\nsome notes\n')
    assert add.exit_code == 0, add.output
    runner.invoke(cli, ['new-credential', 'mr_test', 'bank', '--password', 'pw',
        '--login-username', 'me', '--secret', 'p', '--notes', ''])
    names = runner.invoke(cli, ['list-credentials', 'mr_test', '--password', 'pw'])
    assert names.output.split() == ['bank', 'github']
    show = runner.invoke(cli, ['open-credential', 'mr_test', 'github', '--password', 'pw'])
    assert 'Username: octo' in show.output and 'Password: s3cret' in show.output
    edit = runner.invoke(cli, ['edit-credential', 'mr_test', 'github', '--password', 'pw', '--secret', 'n3w'])
    assert edit.exit_code == 0
    show = runner.invoke(cli, ['open-credential', 'mr_test', 'github', '--password', 'pw'])
    assert 'Password: n3w' in show.output and 'some notes' in show.output
    rm = runner.invoke(cli, ['delete-credential', 'mr_test', 'github', '--password', 'pw', '--force'])
    assert rm.exit_code == 0
    missing = runner.invoke(cli, ['open-credential', 'mr_test', 'github', '--password', 'pw'])
    assert missing.exit_code != 0 and 'No credential named github' in missing.output

def test_cli_files(cli_env):
    runner = CliRunner()
    new_account(runner)
    src = cli_env / 'plain.txt'
    src.write_bytes('secret file 您好'.encode())
    add = runner.invoke(cli, ['new-file', 'mr_test', 'plain.txt', '--password', 'pw', '--source', str(src)])
    assert add.exit_code == 0, add.output
    assert b'secret' not in (cli_env / 'files' / 'mr_test' / 'plain.txt').read_bytes()
    lst = runner.invoke(cli, ['list-files', 'mr_test', '--password', 'pw'])
    assert lst.output.split() == ['plain.txt']
    out = cli_env / 'out.txt'
    opened = runner.invoke(cli, ['open-file', 'mr_test', 'plain.txt', '--password', 'pw', '--out', str(out)])
    assert opened.exit_code == 0
    assert out.read_bytes() == src.read_bytes()
    rm = runner.invoke(cli, ['delete-file', 'mr_test', 'plain.txt', '--password', 'pw'], input='y\n')
    assert rm.exit_code == 0
    assert not (cli_env / 'files' / 'mr_test' / 'plain.txt').exists()

def test_cli_passwd_and_backup(cli_env):
    runner = CliRunner()
    new_account(runner)
    r = runner.invoke(cli, ['passwd', 'mr_test', '--password', 'pw'], input='pw2\npw2\n')
    assert r.exit_code == 0
    assert runner.invoke(cli, ['list-files', 'mr_test', '--password', 'pw']).exit_code != 0
    assert runner.invoke(cli, ['list-files', 'mr_test', '--password', 'pw2']).exit_code == 0
    bk = runner.invoke(cli, ['backup', '--dest', str(cli_env / 'backups')])
    assert bk.exit_code == 0
    assert 'Backup written' in bk.output
    assert len(list((cli_env / 'backups').iterdir())) == 1
