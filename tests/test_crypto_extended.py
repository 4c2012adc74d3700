import pytest
from dataclasses import replace
from dgruft.lib.crypto import VaultCrypto, Envelope
from dgruft.lib.errors import CryptoError, DecryptionFailure

def test_derive_key_consistency():
    c = VaultCrypto()
    salt = c.generate_salt()
    k1 = c.derive_key('secret', salt, 1000)
    k2 = c.derive_key('secret', salt, 1000)
    assert k1 == k2 and len(k1) == 32
    assert c.derive_key('secret', c.generate_salt(), 1000) != k1

def test_derive_key_empty_password():
    c = VaultCrypto()
    with pytest.raises(CryptoError):
        c.derive_key('', c.generate_salt())

def test_encrypt_decrypt_various_sizes():
    c = VaultCrypto(); key = c.new_key()
    for payload in [b'', b'a', 'dgruft很酷。'.encode(), b'\xff\xfe\x00', b'x'*1024, b'y'*4096]:
        env = c.encrypt(payload, key, c.new_nonce())
        assert env.cipherbytes != payload
        assert len(env.nonce) == 12
        assert c.decrypt(env, key) == payload

def test_same_inputs_same_envelope():
    c = VaultCrypto(); key = c.new_key(); nonce = c.new_nonce()
    e1 = c.encrypt(b'this is a test.', key, nonce)
    e2 = c.encrypt(b'this is a test.', key, nonce)
    assert e1 == e2
    assert c.encrypt(b'this is a test.', key, c.new_nonce()) != e1

def test_decrypt_wrong_key():
    c = VaultCrypto()
    env = c.encrypt(b'data', c.new_key(), c.new_nonce())
    with pytest.raises(DecryptionFailure):
        c.decrypt(env, c.new_key())

@pytest.mark.parametrize('field', ['cipherbytes', 'nonce'])
def test_decrypt_bit_flips(field):
    c = VaultCrypto(); key = c.new_key()
    env = c.encrypt(b'some secret data', key, c.new_nonce())
    raw = getattr(env, field)
    for i in range(len(raw)):
        for bit in (0x01, 0x80):
            flipped = bytearray(raw); flipped[i] ^= bit
            tampered = replace(env, **{field: bytes(flipped)})
            with pytest.raises(DecryptionFailure):
                c.decrypt(tampered, key)

@pytest.mark.parametrize('env', [
    Envelope(b'', b'\x00' * 12),
    Envelope(b'short', b'\x00' * 12),
    Envelope(b'\x00' * 32, b'\x00' * 11),
    Envelope(b'\x00' * 32, b''),
])
def test_decrypt_malformed_envelopes(env):
    c = VaultCrypto()
    with pytest.raises(DecryptionFailure):
        c.decrypt(env, c.new_key())

def test_bad_key_and_nonce_lengths():
    c = VaultCrypto()
    with pytest.raises(CryptoError):
        c.encrypt(b'data', b'k' * 16, c.new_nonce())
    with pytest.raises(CryptoError):
        c.encrypt(b'data', c.new_key(), b'n' * 16)

def test_name_nonce_is_stable_per_key_and_name():
    c = VaultCrypto(); key = c.new_key()
    assert c.name_nonce(key, b'github') == c.name_nonce(key, b'github')
    assert c.name_nonce(key, b'github') != c.name_nonce(key, b'gitlab')
    assert c.name_nonce(c.new_key(), b'github') != c.name_nonce(key, b'github')
    assert len(c.name_nonce(key, b'github')) == 12
