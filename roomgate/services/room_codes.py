# roomgate/services/room_codes.py

import secrets
import string

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_room_code(length: int = 6) -> str:
    """Random room code drawn from A-Z0-9. Uniqueness is the caller's job."""
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))
