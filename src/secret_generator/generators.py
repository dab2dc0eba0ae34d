"""Value generators for credential material.

All randomness comes from the ``secrets`` module (the operating system's
CSPRNG) or from the cryptography library's key generation.
"""

import base64
import secrets

import bcrypt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from secret_generator.config import DEFAULT_SECRET_LENGTH, DEFAULT_SSH_KEY_LENGTH, MIN_SSH_KEY_LENGTH
from secret_generator.exceptions import GenerationError
from secret_generator.models import Charset, Encoding

FIELD_USERNAME = "username"
FIELD_PASSWORD = "password"
FIELD_AUTH = "auth"
FIELD_SSH_PRIVATE_KEY = "ssh-privatekey"
FIELD_SSH_PUBLIC_KEY = "ssh-publickey"

BASIC_AUTH_FIELDS: tuple[str, ...] = (FIELD_AUTH, FIELD_USERNAME, FIELD_PASSWORD)
SSH_KEYPAIR_FIELDS: tuple[str, ...] = (FIELD_SSH_PRIVATE_KEY, FIELD_SSH_PUBLIC_KEY)

_RSA_PUBLIC_EXPONENT = 65537
# bcrypt ignores everything past this many bytes and newer releases reject longer input
_BCRYPT_MAX_PASSWORD_BYTES = 72


def generate_random_string(length: int, charset: Charset = Charset.ALPHANUMERIC) -> bytes:
    """Generate a random string of ``length`` characters.

    Args:
        length: Number of characters. Values below 1 use the default length.
        charset: Character class to draw from.

    Returns:
        The random string encoded as ASCII bytes.

    """
    if length <= 0:
        length = DEFAULT_SECRET_LENGTH
    alphabet = charset.alphabet
    return "".join(secrets.choice(alphabet) for _ in range(length)).encode()


def generate_random_bytes(length: int, encoding: Encoding = Encoding.BASE64) -> bytes:
    """Generate ``length`` random bytes and encode them.

    Args:
        length: Number of random bytes. Values below 1 use the default length.
        encoding: How to encode the bytes for storage.

    Returns:
        The encoded value.

    """
    if length <= 0:
        length = DEFAULT_SECRET_LENGTH
    raw = secrets.token_bytes(length)

    match encoding:
        case Encoding.BASE64:
            return base64.b64encode(raw)
        case Encoding.BASE64URL:
            return base64.urlsafe_b64encode(raw)
        case Encoding.BASE32:
            return base64.b32encode(raw)
        case Encoding.HEX:
            return raw.hex().encode()
        case _:
            return raw


def hash_password(password: bytes) -> bytes:
    """Hash a password with bcrypt for HTTP basic-auth verification.

    Args:
        password: The plaintext password.

    Returns:
        The bcrypt hash in modular crypt format.

    """
    return bcrypt.hashpw(password[:_BCRYPT_MAX_PASSWORD_BYTES], bcrypt.gensalt())


def generate_basic_auth(username: str, length: int, charset: Charset = Charset.ALPHANUMERIC) -> dict[str, bytes]:
    """Generate a basic-auth credential set.

    Args:
        username: The username to store.
        length: Password length in characters.
        charset: Character class for the password.

    Returns:
        Mapping with ``username``, ``password`` and the ``auth`` entry
        formatted as ``username:<bcrypt hash>``.

    """
    password = generate_random_string(length, charset)
    user = username.encode()
    return {
        FIELD_USERNAME: user,
        FIELD_PASSWORD: password,
        FIELD_AUTH: user + b":" + hash_password(password),
    }


def generate_ssh_keypair(bits: int = DEFAULT_SSH_KEY_LENGTH) -> dict[str, bytes]:
    """Generate an RSA keypair for SSH.

    Args:
        bits: Key size. Sizes below 1024 use the default size.

    Returns:
        Mapping with the PEM encoded private key and the public key
        in authorized_keys format.

    Raises:
        GenerationError: If the key cannot be generated or serialized.

    """
    if bits < MIN_SSH_KEY_LENGTH:
        bits = DEFAULT_SSH_KEY_LENGTH

    try:
        key = rsa.generate_private_key(public_exponent=_RSA_PUBLIC_EXPONENT, key_size=bits)
        private_key = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_key = key.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        )
    except (ValueError, UnsupportedAlgorithm) as err:
        raise GenerationError(f"Failed to generate {bits} bit RSA keypair: {err}") from err

    return {
        FIELD_SSH_PRIVATE_KEY: private_key,
        FIELD_SSH_PUBLIC_KEY: public_key + b"\n",
    }
