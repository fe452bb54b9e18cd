import asyncio
import logging
import random
import re
import string
import time
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

import config
from errors import (CapacityError, DuplicatePlayer, GameInProgress, InvalidSettings,
                    RoomFull, RoomNotFound)
from models import GameSettings, Player

logger = logging.getLogger(__name__)

ROOM_CODE_CHARS = string.ascii_uppercase + string.digits
ROOM_CODE_PATTERN = re.compile(r'^[A-Z0-9]{6}$')

WAITING = "waiting"
STARTING = "starting"
PLAYING = "playing"
SHOWING_RESULTS = "showing_results"
FINISHED = "finished"
ROOM_STATUSES = (WAITING, STARTING, PLAYING, SHOWING_RESULTS, FINISHED)


def build_settings(overrides: Optional[dict] = None, base: Optional[GameSettings] = None) -> GameSettings:
    """Merge ``overrides`` (camelCase or snake_case keys) onto ``base`` or the defaults."""
    if overrides is None:
        overrides = {}
    if not isinstance(overrides, dict):
        raise InvalidSettings("Game settings must be an object")
    merged = {**(base.to_wire() if base else {}), **overrides}
    try:
        return GameSettings.model_validate(merged)
    except PydanticValidationError as e:
        first = e.errors()[0]
        message = str(first.get("msg", "Invalid game settings")).removeprefix("Value error, ")
        raise InvalidSettings(message) from e


class Room:
    def __init__(self, code: str, host_id: str, settings: GameSettings):
        self.code = code
        self.host_id = host_id
        self.settings = settings
        self.players: List[Player] = []  # join order
        self.status = WAITING
        self.created_at = time.time()
        self.last_activity = self.created_at
        self.match = None  # MatchSession while a game is running
        self.last_results = None  # FinalResults of the last finished game

    @property
    def max_players(self) -> int:
        return self.settings.max_players

    @property
    def is_full(self) -> bool:
        return len(self.players) >= self.max_players

    @property
    def player_ids(self) -> List[str]:
        return [p.id for p in self.players]

    def touch(self):
        """Update last activity timestamp."""
        self.last_activity = time.time()

    def is_expired(self, idle_seconds: float = config.ROOM_IDLE_SECONDS, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now - self.last_activity > idle_seconds

    def get_player(self, player_id: str) -> Optional[Player]:
        return next((p for p in self.players if p.id == player_id), None)

    def has_player(self, player_id: str) -> bool:
        return self.get_player(player_id) is not None

    def public_info(self) -> dict:
        return {
            "code": self.code,
            "playersCount": len(self.players),
            "maxPlayers": self.max_players,
            "status": self.status,
            "settings": {
                "totalQuestions": self.settings.total_questions,
                "questionTime": self.settings.question_time,
                "difficultyLevel": self.settings.difficulty_level,
            },
        }

    def snapshot(self) -> dict:
        return {
            "code": self.code,
            "hostId": self.host_id,
            "status": self.status,
            "maxPlayers": self.max_players,
            "settings": self.settings.to_wire(),
            "players": [p.public() for p in self.players],
        }


class SessionDirectory:
    """Live rooms by code, with capacity checks and idle-room garbage collection."""

    def __init__(self, idle_seconds: float = config.ROOM_IDLE_SECONDS,
                 cleanup_interval: float = config.CLEANUP_INTERVAL_SECONDS,
                 max_rooms: int = config.MAX_ROOMS,
                 rng: Optional[random.Random] = None):
        self.rooms: Dict[str, Room] = {}
        self.idle_seconds = idle_seconds
        self.cleanup_interval = cleanup_interval
        self.max_rooms = max_rooms
        self.rng = rng or random.Random()
        self.last_cleanup: Optional[float] = None
        self._cleanup_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self.rooms)

    def __contains__(self, code: str) -> bool:
        return code in self.rooms

    @staticmethod
    def is_valid_room_code(code) -> bool:
        return isinstance(code, str) and bool(ROOM_CODE_PATTERN.match(code))

    def generate_room_code(self) -> str:
        """Generate a unique 6-character room code, checking for collisions."""
        for _ in range(config.MAX_ROOM_CODE_ATTEMPTS):
            code = ''.join(self.rng.choices(ROOM_CODE_CHARS, k=config.ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise CapacityError("Failed to generate unique room code")

    def create_session(self, host_connection_id: str, settings_overrides: Optional[dict] = None) -> Room:
        if len(self.rooms) >= self.max_rooms:
            raise CapacityError("Too many active rooms. Please try again later.")
        settings = build_settings(settings_overrides)
        code = self.generate_room_code()
        room = Room(code, host_connection_id, settings)
        self.rooms[code] = room
        logger.info("Room created: %s (host %s)", code, host_connection_id)
        return room

    def get_session(self, code: str) -> Optional[Room]:
        room = self.rooms.get(code)
        if room:
            room.touch()
        return room

    def require_session(self, code: str) -> Room:
        room = self.get_session(code)
        if room is None:
            raise RoomNotFound(f"Room {code} not found")
        return room

    def add_player(self, code: str, player: Player) -> Room:
        room = self.require_session(code)
        if room.is_full:
            raise RoomFull(f"Room {code} is full ({room.max_players} players max)")
        if room.has_player(player.id):
            raise DuplicatePlayer(f"Player is already in room {code}")
        room.players.append(player)
        logger.info("Player %s added to room %s (%d/%d)", player.name, code, len(room.players), room.max_players)
        return room

    def remove_player(self, code: str, player_id: str) -> bool:
        room = self.rooms.get(code)
        if room is None:
            return False
        player = room.get_player(player_id)
        if player is None:
            return False
        room.players.remove(player)
        room.touch()
        logger.info("Player %s removed from room %s (%d/%d)", player.name, code, len(room.players), room.max_players)
        return True

    def find_room_by_player(self, player_id: str) -> Optional[Room]:
        return next((room for room in self.rooms.values() if room.has_player(player_id)), None)

    def update_settings(self, code: str, overrides: dict) -> GameSettings:
        room = self.require_session(code)
        if room.status != WAITING:
            raise GameInProgress("Settings cannot change once the game has started")
        settings = build_settings(overrides, base=room.settings)
        if settings.max_players < len(room.players):
            raise InvalidSettings("Max players cannot be lower than the current player count")
        room.settings = settings
        logger.info("Room %s settings updated", code)
        return settings

    def close_session(self, code: str) -> Optional[Room]:
        room = self.rooms.pop(code, None)
        if room is None:
            return None
        if room.match is not None:
            room.match.close()
            room.match = None
        logger.info("Room %s closed (%d players)", code, len(room.players))
        return room

    def sweep(self, now: Optional[float] = None) -> List[Room]:
        """Close every room idle for longer than the threshold, whatever its status."""
        now = time.time() if now is None else now
        expired = [code for code, room in self.rooms.items() if room.is_expired(self.idle_seconds, now)]
        removed = []
        for code in expired:
            room = self.close_session(code)
            if room is not None:
                removed.append(room)
                logger.info("Cleaned up idle room %s", code)
        self.last_cleanup = now
        return removed

    def start_cleanup_loop(self, on_expired: Optional[Callable[[Room], None]] = None):
        """Start the background room cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_idle_rooms(on_expired))

    async def stop_cleanup_loop(self):
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_idle_rooms(self, on_expired: Optional[Callable[[Room], None]]):
        """Periodically remove idle rooms."""
        while True:
            try:
                await asyncio.sleep(self.cleanup_interval)
                for room in self.sweep():
                    if on_expired:
                        on_expired(room)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in room cleanup loop")

    def public_info(self, code: str) -> Optional[dict]:
        room = self.rooms.get(code)
        return room.public_info() if room else None

    def stats(self) -> dict:
        rooms = list(self.rooms.values())
        total_players = sum(len(room.players) for room in rooms)
        by_status = {status: 0 for status in ROOM_STATUSES}
        for room in rooms:
            by_status[room.status] = by_status.get(room.status, 0) + 1
        return {
            "totalRooms": len(rooms),
            "totalPlayers": total_players,
            "averagePlayersPerRoom": round(total_players / len(rooms), 2) if rooms else 0,
            "roomsByStatus": by_status,
            "lastCleanup": self.last_cleanup,
        }
