"""Tests for recipient-based file encryption and identity files."""

import stat

import pytest

from finvault.errors import DecryptionFailure
from finvault.recipients import (
    Identity,
    Recipient,
    decrypt,
    decrypt_file,
    encrypt,
    encrypt_file,
    generate_keypair,
    read_identity_file,
    read_public_key,
    write_identity_file,
)


class TestKeys:
    def test_generate_keypair(self):
        public, private = generate_keypair()
        assert private.recipient == public
        assert str(public).startswith("age1")
        assert str(private).startswith("AGE-SECRET-KEY-1")

    def test_string_roundtrip(self):
        public, private = generate_keypair()
        assert Recipient.from_string(str(public)) == public
        assert Identity.from_string(str(private)).recipient == public

    def test_repr_does_not_leak_secret(self):
        _, private = generate_keypair()
        assert str(private) not in repr(private)

    @pytest.mark.parametrize("text", ["", "age1abc", "fvpub-AAAA", "AGE-SECRET-KEY-1QQQQ"])
    def test_malformed_public_key(self, text):
        with pytest.raises(ValueError):
            Recipient.from_string(text)

    def test_malformed_secret_key(self):
        with pytest.raises(ValueError):
            Identity.from_string("AGE-SECRET-KEY-1SHORT")


class TestIdentityFile:
    def test_write_and_read(self, tmp_path):
        identity = Identity.generate()
        path = write_identity_file(tmp_path / "keys" / "dev-key.txt", identity)
        assert read_identity_file(path).recipient == identity.recipient
        assert read_public_key(path) == identity.recipient

    def test_file_layout(self, tmp_path):
        identity = Identity.generate()
        path = write_identity_file(tmp_path / "key.txt", identity)
        lines = path.read_text().splitlines()
        assert lines[0].startswith("# created: ")
        assert lines[1] == f"# public key: {identity.recipient}"
        assert lines[2] == str(identity)

    def test_owner_only_permissions(self, tmp_path):
        path = write_identity_file(tmp_path / "key.txt", Identity.generate())
        assert path.stat().st_mode & 0o777 == stat.S_IRUSR | stat.S_IWUSR

    def test_refuses_overwrite(self, tmp_path):
        path = write_identity_file(tmp_path / "key.txt", Identity.generate())
        with pytest.raises(FileExistsError):
            write_identity_file(path, Identity.generate())

    def test_overwrite_when_asked(self, tmp_path):
        path = write_identity_file(tmp_path / "key.txt", Identity.generate())
        replacement = Identity.generate()
        write_identity_file(path, replacement, overwrite=True)
        assert read_public_key(path) == replacement.recipient

    def test_public_key_derived_not_trusted_from_comment(self, tmp_path):
        identity = Identity.generate()
        other = Identity.generate()
        path = tmp_path / "key.txt"
        path.write_text(f"# public key: {other.recipient}\n{identity}\n")
        assert read_public_key(path) == identity.recipient

    def test_no_secret_key(self, tmp_path):
        path = tmp_path / "key.txt"
        path.write_text("# only comments\n")
        with pytest.raises(ValueError, match="No secret key"):
            read_identity_file(path)


class TestEncryptDecrypt:
    def test_roundtrip(self):
        public, private = generate_keypair()
        assert decrypt(encrypt(b"secrets = 1\n", [public]), private) == b"secrets = 1\n"

    def test_multi_recipient(self):
        """Encrypted to {A, B}: A and B can decrypt, C cannot."""
        a, b, c = Identity.generate(), Identity.generate(), Identity.generate()
        ciphertext = encrypt(b"shared", [a.recipient, b.recipient])
        assert decrypt(ciphertext, a) == b"shared"
        assert decrypt(ciphertext, b) == b"shared"
        with pytest.raises(DecryptionFailure) as exc:
            decrypt(ciphertext, c)
        assert exc.value.reason == DecryptionFailure.NOT_RECIPIENT
        assert exc.value.public_key == str(c.recipient)

    def test_requires_recipient(self):
        with pytest.raises(ValueError, match="recipient"):
            encrypt(b"data", [])

    def test_duplicate_recipients_collapsed(self):
        public, private = generate_keypair()
        once = encrypt(b"x", [public])
        twice = encrypt(b"x", [public, public])
        assert len(twice) == len(once)
        assert decrypt(twice, private) == b"x"

    def test_not_an_encrypted_file(self):
        _, private = generate_keypair()
        with pytest.raises(DecryptionFailure) as exc:
            decrypt(b"plain old text", private)
        assert exc.value.reason == DecryptionFailure.CORRUPTED

    def test_corrupted_header(self):
        public, private = generate_keypair()
        ciphertext = bytearray(encrypt(b"data", [public]))
        magic_end = ciphertext.index(b"\n")
        ciphertext[magic_end + 2] = ord("#")
        with pytest.raises(DecryptionFailure) as exc:
            decrypt(bytes(ciphertext), private)
        assert exc.value.reason == DecryptionFailure.CORRUPTED

    def test_corrupted_body(self):
        public, private = generate_keypair()
        ciphertext = bytearray(encrypt(b"data", [public]))
        ciphertext[-1] ^= 0xFF
        with pytest.raises(DecryptionFailure) as exc:
            decrypt(bytes(ciphertext), private)
        assert exc.value.reason == DecryptionFailure.CORRUPTED

    def test_age_format(self):
        """Output is a binary age file readable by the age tools."""
        public, _ = generate_keypair()
        ciphertext = encrypt(b"data", [public])
        assert ciphertext.startswith(b"age-encryption.org/v1\n-> X25519 ")

    def test_ciphertext_differs_each_time(self):
        public, _ = generate_keypair()
        assert encrypt(b"same", [public]) != encrypt(b"same", [public])


class TestFiles:
    def test_encrypt_and_decrypt_file(self, tmp_path):
        public, private = generate_keypair()
        source = tmp_path / "plain.toml"
        source.write_text('a = "b"\n')
        output = tmp_path / "out" / "plain.toml.enc"
        encrypt_file(source, [public], output)
        assert output.exists()
        assert b'a = "b"' not in output.read_bytes()
        assert decrypt_file(output, private) == b'a = "b"\n'

    def test_encrypt_file_replaces_existing(self, tmp_path):
        public, private = generate_keypair()
        source = tmp_path / "plain.txt"
        output = tmp_path / "plain.txt.enc"
        source.write_text("one")
        encrypt_file(source, [public], output)
        source.write_text("two")
        encrypt_file(source, [public], output)
        assert decrypt_file(output, private) == b"two"
        assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")] == []

    def test_unauthorized_environment_identity(self, tmp_path):
        """A file encrypted only to prod cannot be opened with the dev identity."""
        prod, dev = Identity.generate(), Identity.generate()
        source = tmp_path / "secrets.toml"
        source.write_text("x = 1\n")
        encrypt_file(source, [prod.recipient], tmp_path / "secrets.toml.enc")
        with pytest.raises(DecryptionFailure):
            decrypt_file(tmp_path / "secrets.toml.enc", dev)
