import random
from typing import Callable, Container, Optional

from multilink.constants import JOIN_CODE_ALPHABET, JOIN_CODE_LENGTH, JOIN_CODE_ATTEMPTS
from multilink.utils.time_utils import now_ms


def random_code(rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return "".join(rng.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))


def generate_unique_join_code(
    taken: Container[str],
    rng: Optional[random.Random] = None,
    clock: Callable[[], int] = now_ms,
) -> str:
    """Pick a code not in ``taken``.

    After JOIN_CODE_ATTEMPTS collisions, fall back to the last digits of the
    current epoch millis.
    """
    for _ in range(JOIN_CODE_ATTEMPTS):
        code = random_code(rng)
        if code not in taken:
            return code
    return str(clock())[-JOIN_CODE_LENGTH:]


def normalize_code(text: str) -> str:
    return (text or "").strip().upper()
