from passlib.context import CryptContext

from twofactor.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def burn_password_check() -> None:
    """Spend the same time as a real check when there is no account to check against."""
    pwd_context.dummy_verify()
