# roomgate/core/errors.py


class RoomgateError(Exception):
    """Base class for errors raised by the room services."""


class RoomCodeTakenError(RoomgateError):
    """The store already holds a live room with this code."""

    def __init__(self, room_code: str) -> None:
        super().__init__(f"Room code already in use: {room_code}")
        self.room_code = room_code


class RoomCodeSpaceExhaustedError(RoomgateError):
    """No free room code was found within the configured number of attempts."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"No unique room code found after {attempts} attempts")
        self.attempts = attempts
