import random
import string

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_short_code(rng: random.Random, length: int = 6) -> str:
    """Short, human-typeable id (e.g. 'K7Q2ZD') used for room codes and display ids."""
    return "".join(rng.choice(_CODE_ALPHABET) for _ in range(length))


def normalize_room_code(room_id: str) -> str:
    return room_id.strip().upper()
