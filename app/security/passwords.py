from pwdlib import PasswordHash


MIN_PASSWORD_LENGTH = 8

password_hash = PasswordHash.recommended()


def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str) -> bool:
    return password_hash.verify(raw_password, hashed_password)


def validate_new_password(raw_password: str | None) -> str:
    password = (raw_password or '').strip()
    if not password:
        raise ValueError('Password is required')
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    return password


def normalize_email(raw_email: str | None) -> str:
    email = (raw_email or '').strip().lower()
    if not email or '@' not in email or email.startswith('@') or email.endswith('@'):
        raise ValueError('A valid email address is required')
    return email
