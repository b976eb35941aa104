import hashlib
import hmac
from passlib.context import CryptContext

bcrypt_context = CryptContext(schemes=['bcrypt'], deprecated='auto')

def get_password_hash(password: str):
    # Bcrypt has a 72-byte limit, truncate if necessary
    return bcrypt_context.hash(password[:72])


def verify_password(plain_password: str, hashed_password: str):
    # Bcrypt has a 72-byte limit, truncate if necessary
    return bcrypt_context.verify(plain_password[:72], hashed_password)


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a refresh secret. This is what gets stored."""
    return hashlib.sha256(raw_token.encode("utf-8", "surrogatepass")).hexdigest()


def digests_match(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("ascii"), b.encode("ascii"))
