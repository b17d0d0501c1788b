"""
Identity Core - password hashing for credential tables.
"""

from pgtables.kernel.identity.password import PasswordHasher, verify_password, hash_password

__all__ = [
    "PasswordHasher",
    "verify_password",
    "hash_password",
]
