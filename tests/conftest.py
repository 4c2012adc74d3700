import pytest
from dgruft.lib import auth
from dgruft.lib.vault import Vault

FAST_ITERATIONS = 1000

@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
	monkeypatch.setattr(auth, 'BCRYPT_ROUNDS', 4)

@pytest.fixture
def vault(tmp_path):
	v = Vault.connect(tmp_path / 'vault.db', tmp_path / 'files', iterations=FAST_ITERATIONS)
	yield v
	v.close()

@pytest.fixture
def cli_env(monkeypatch, tmp_path):
	monkeypatch.setenv('DGRUFT_DB_PATH', str(tmp_path / 'vault.db'))
	monkeypatch.setenv('DGRUFT_DATA_DIR', str(tmp_path / 'files'))
	return tmp_path
