import pytest
from dataclasses import replace
from dgruft.lib import auth
from dgruft.lib.auth import hash_password, verify_password, register, unlock, rewrap
from dgruft.lib.crypto import Envelope
from dgruft.lib.errors import AuthFailure, DecryptionFailure, SessionClosed

IT = 1000

def test_hash_and_verify():
	h = hash_password('pw')
	assert h != 'pw'
	assert verify_password('pw', h)
	assert not verify_password('nope', h)
	assert not verify_password('pw', 'not-a-bcrypt-hash')

def test_hash_empty_password():
	with pytest.raises(ValueError):
		hash_password('')

def test_register_builds_wrapped_account():
	acc = register('mr_test', 'pw1', IT)
	assert acc.username == 'mr_test'
	assert verify_password('pw1', acc.password_verifier)
	assert len(acc.key_salt) == 32
	assert len(acc.data_key_envelope.nonce) == 12
	# 32-byte DEK + 16-byte tag
	assert len(acc.data_key_envelope.cipherbytes) == 48

def test_register_rejects_bad_username():
	with pytest.raises(ValueError):
		register('../evil', 'pw', IT)

def test_each_account_gets_its_own_dek():
	a, b = register('a', 'pw', IT), register('b', 'pw', IT)
	with unlock(a, 'pw', IT) as sa, unlock(b, 'pw', IT) as sb:
		assert bytes(sa.key) != bytes(sb.key)

def test_unlock_wrong_password_never_touches_envelope(monkeypatch):
	acc = register('mr_test', 'pw1', IT)
	calls = []
	monkeypatch.setattr(auth.VaultCrypto, 'decrypt', lambda *a: calls.append(a))
	with pytest.raises(AuthFailure):
		unlock(acc, 'pw2', IT)
	assert calls == []

def test_unlock_tampered_envelope_is_decryption_failure():
	acc = register('mr_test', 'pw1', IT)
	env = acc.data_key_envelope
	bad = replace(acc, data_key_envelope=Envelope(bytes([env.cipherbytes[0] ^ 1]) + env.cipherbytes[1:], env.nonce))
	with pytest.raises(DecryptionFailure):
		unlock(bad, 'pw1', IT)

def test_session_fields_roundtrip_and_close_zeroes_key():
	acc = register('mr_test', 'pw1', IT)
	session = unlock(acc, 'pw1', IT)
	env = session.encrypt_field('blahblahblah')
	assert session.decrypt_field(env) == 'blahblahblah'
	assert session.encrypt_name('maxgmr.ca') == session.encrypt_name('maxgmr.ca')
	assert session.encrypt_field('x') != session.encrypt_field('x')
	key = session._key
	session.close()
	assert session.closed
	assert key == bytearray(32)
	with pytest.raises(SessionClosed):
		session.decrypt_field(env)
	with pytest.raises(SessionClosed):
		session.encrypt_name('maxgmr.ca')
	assert not issubclass(SessionClosed, AuthFailure)

def test_session_context_manager_closes_on_error():
	acc = register('mr_test', 'pw1', IT)
	with pytest.raises(RuntimeError):
		with unlock(acc, 'pw1', IT) as s:
			raise RuntimeError('boom')
	assert s.closed

def test_rewrap_keeps_dek():
	acc = register('mr_test', 'old', IT)
	with unlock(acc, 'old', IT) as s:
		env = s.encrypt_field('secret')
	new = rewrap(acc, 'old', 'new', IT)
	assert new.key_salt != acc.key_salt
	with pytest.raises(AuthFailure):
		unlock(new, 'old', IT)
	with unlock(new, 'new', IT) as s:
		assert s.decrypt_field(env) == 'secret'

def test_rewrap_needs_old_password():
	acc = register('mr_test', 'old', IT)
	with pytest.raises(AuthFailure):
		rewrap(acc, 'wrong', 'new', IT)
