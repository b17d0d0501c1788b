"""
Password hashing utilities using bcrypt.
"""

from functools import lru_cache
from typing import Optional

import bcrypt

from pgtables.config import get_settings
from pgtables.kernel.errors import WeakSecretError

# OWASP floor for bcrypt work factor
MIN_BCRYPT_ROUNDS = 10

# Never a real password; only hashed to give the miss path a real comparison.
_DUMMY_SECRET = b"pgtables-dummy-secret-for-timing"


@lru_cache(maxsize=None)
def _dummy_hash(rounds: int) -> bytes:
    # One hash per work factor for the life of the process.
    return bcrypt.hashpw(_DUMMY_SECRET, bcrypt.gensalt(rounds=rounds))


class PasswordHasher:
    """Password hashing service.

    ``rounds`` and ``min_length`` default to the configured settings.
    """

    def __init__(self, rounds: Optional[int] = None, min_length: Optional[int] = None):
        settings = get_settings()
        self.rounds = settings.bcrypt_rounds if rounds is None else rounds
        self.min_length = settings.min_password_length if min_length is None else min_length
        if self.rounds < MIN_BCRYPT_ROUNDS:
            raise ValueError(f"bcrypt rounds must be at least {MIN_BCRYPT_ROUNDS}")

    @staticmethod
    def _truncate_password(password: str) -> bytes:
        """
        Truncate password to 72 bytes (bcrypt limit) and encode.

        bcrypt only uses the first 72 bytes of a password.
        This method ensures we don't exceed that limit.
        """
        return password.encode('utf-8')[:72]

    def check_policy(self, password: Optional[str]) -> None:
        """Raise WeakSecretError unless the password may be hashed."""
        if not isinstance(password, str) or len(password) < self.min_length:
            raise WeakSecretError(self.min_length)

    def hash(self, password: str) -> str:
        """
        Hash a password using bcrypt.

        Args:
            password: Plain text password

        Returns:
            Hashed password string

        Raises:
            WeakSecretError: If the password is missing or too short. Raised
                before any hashing work is done.
        """
        self.check_policy(password)
        pwd_bytes = self._truncate_password(password)
        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = bcrypt.hashpw(pwd_bytes, salt)
        return hashed.decode('utf-8')

    def verify(self, plain_password: str, hashed_password: Optional[str]) -> bool:
        """
        Verify a password against its hash.

        A missing or malformed hash is checked against the dummy hash instead,
        so every call costs one bcrypt comparison.

        Args:
            plain_password: Plain text password to verify
            hashed_password: Stored hashed password, or None when no row matched

        Returns:
            True if password matches, False otherwise
        """
        pwd_bytes = self._truncate_password(plain_password or "")
        if hashed_password:
            try:
                return bcrypt.checkpw(pwd_bytes, hashed_password.encode('utf-8'))
            except ValueError:
                # Malformed hash in storage: fall through to the dummy comparison.
                pass
        self.burn(pwd_bytes)
        return False

    def burn(self, pwd_bytes: bytes) -> None:
        """Spend one comparison against the fixed dummy hash."""
        bcrypt.checkpw(pwd_bytes, self.dummy_hash)

    @property
    def dummy_hash(self) -> bytes:
        return _dummy_hash(self.rounds)

    def needs_rehash(self, hashed_password: str) -> bool:
        """
        Check if a password hash needs to be upgraded.

        Currently checks if the hash uses a different number of rounds.
        """
        # Format: $2b$XX$... where XX is the rounds
        parts = hashed_password.split('$')
        if len(parts) < 4 or not parts[2].isdigit():
            return True
        return int(parts[2]) != self.rounds


# Convenience functions
def hash_password(password: str) -> str:
    """Hash a password with the configured work factor."""
    return PasswordHasher().hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password with the configured work factor."""
    return PasswordHasher().verify(plain_password, hashed_password)
