import hmac
import secrets
import string
from dataclasses import dataclass, field

ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
BATCH_SIZE = 10


@dataclass(frozen=True)
class ConsumeResult:
    matched: bool
    remaining: list[str] = field(default_factory=list)


def normalize(code: str) -> str:
    return code.strip().upper()


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def generate_batch(count: int = BATCH_SIZE, length: int = CODE_LENGTH) -> list[str]:
    """Return ``count`` distinct single-use recovery codes."""
    codes: list[str] = []
    seen: set[str] = set()
    while len(codes) < count:
        code = generate_code(length)
        if code in seen:
            continue
        seen.add(code)
        codes.append(code)
    return codes


def consume(codes: list[str] | None, submitted: str | None) -> ConsumeResult:
    """Remove the first code equal to ``submitted`` (case-insensitive).

    Always returns a fresh list; the input is never mutated.
    """
    current = list(codes or [])
    if not submitted or not submitted.strip():
        return ConsumeResult(matched=False, remaining=current)

    wanted = normalize(submitted).encode("utf-8")
    for index, stored in enumerate(current):
        if hmac.compare_digest(normalize(stored).encode("utf-8"), wanted):
            return ConsumeResult(matched=True, remaining=current[:index] + current[index + 1:])
    return ConsumeResult(matched=False, remaining=current)
