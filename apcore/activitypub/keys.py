# apcore/activitypub/keys.py
"""
RSA key material for HTTP signatures.

Each local actor owns exactly one key pair, generated once when the
account is created and persisted as a pair so the halves can never
diverge. Keys travel as PEM in either PKCS#1 (``RSA PUBLIC KEY`` /
``RSA PRIVATE KEY``) or PKCS#8 / SubjectPublicKeyInfo form; both are
accepted when decoding.
"""

from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..errors import SignatureError, SignatureErrorKind

DEFAULT_KEY_SIZE = 4096
PUBLIC_EXPONENT = 65537


def _pem_bytes(pem: str | bytes) -> bytes:
    return pem.encode("utf-8") if isinstance(pem, str) else pem


class VerifyingKey:
    """RSA public key used to check RSA-SHA256 (PKCS#1 v1.5) signatures."""

    def __init__(self, key: rsa.RSAPublicKey):
        self._key = key

    @classmethod
    def from_pem(cls, pem: str | bytes) -> "VerifyingKey":
        """
        Decode a public key PEM.

        Accepts SubjectPublicKeyInfo (``PUBLIC KEY``) and PKCS#1
        (``RSA PUBLIC KEY``) blocks.

        Raises:
            SignatureError: KEY_DECODE if neither form decodes to an RSA key
        """
        try:
            key = serialization.load_pem_public_key(_pem_bytes(pem))
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SignatureError(SignatureErrorKind.KEY_DECODE, f"cannot decode public key: {e}") from e
        if not isinstance(key, rsa.RSAPublicKey):
            raise SignatureError(SignatureErrorKind.KEY_DECODE, "public key is not RSA")
        return cls(key)

    def verify(self, message: bytes, signature: bytes) -> None:
        """
        Verify an RSA-SHA256 signature.

        Raises:
            SignatureError: INVALID if the signature does not match
        """
        try:
            self._key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature as e:
            raise SignatureError(SignatureErrorKind.INVALID, "signature does not verify") from e

    def to_pkcs1_pem(self) -> str:
        return self._key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.PKCS1,
        ).decode("utf-8")

    def to_pkcs8_pem(self) -> str:
        return self._key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")

    @property
    def key_size(self) -> int:
        return self._key.key_size

    def __eq__(self, other) -> bool:
        if not isinstance(other, VerifyingKey):
            return NotImplemented
        return self._key.public_numbers() == other._key.public_numbers()

    def __hash__(self) -> int:
        return hash(self._key.public_numbers().n)

    def __str__(self) -> str:
        return self.to_pkcs8_pem()


class SigningKey:
    """RSA private key producing RSA-SHA256 (PKCS#1 v1.5) signatures."""

    def __init__(self, key: rsa.RSAPrivateKey):
        self._key = key

    @classmethod
    def generate(cls, key_size: int = DEFAULT_KEY_SIZE) -> "SigningKey":
        """Generate a fresh RSA private key."""
        return cls(rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size))

    @classmethod
    def from_pem(cls, pem: str | bytes) -> "SigningKey":
        """
        Decode an unencrypted private key PEM (PKCS#8 or PKCS#1).

        Raises:
            SignatureError: KEY_DECODE if the PEM does not hold an RSA key
        """
        try:
            key = serialization.load_pem_private_key(_pem_bytes(pem), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SignatureError(SignatureErrorKind.KEY_DECODE, f"cannot decode private key: {e}") from e
        if not isinstance(key, rsa.RSAPrivateKey):
            raise SignatureError(SignatureErrorKind.KEY_DECODE, "private key is not RSA")
        return cls(key)

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message, padding.PKCS1v15(), hashes.SHA256())

    def public_key(self) -> VerifyingKey:
        return VerifyingKey(self._key.public_key())

    def to_pkcs1_pem(self) -> str:
        return self._key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8")

    def to_pkcs8_pem(self) -> str:
        return self._key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8")

    @property
    def key_size(self) -> int:
        return self._key.key_size

    def __repr__(self) -> str:
        return f"SigningKey(rsa-{self.key_size})"


@dataclass(frozen=True)
class KeyPair:
    """
    Public and private halves kept together.

    Persist and load through this type only, so a stored public key
    always matches its private key.
    """
    private_key: SigningKey
    public_key: VerifyingKey

    @classmethod
    def generate(cls, key_size: int = DEFAULT_KEY_SIZE) -> "KeyPair":
        private_key = SigningKey.generate(key_size)
        return cls(private_key=private_key, public_key=private_key.public_key())

    @classmethod
    def from_private_pem(cls, pem: str | bytes) -> "KeyPair":
        private_key = SigningKey.from_pem(pem)
        return cls(private_key=private_key, public_key=private_key.public_key())

    def to_pem(self) -> tuple[str, str]:
        """Return (private PKCS#8 PEM, public SubjectPublicKeyInfo PEM)."""
        return self.private_key.to_pkcs8_pem(), self.public_key.to_pkcs8_pem()
