from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError
from typing import Any, Callable, Dict, Iterable, List, Optional
import json
import time
import uuid
import logging

import config
from errors import GameError
from game_coordinator import GameCoordinator
from models import Outbound, WireModel

logger = logging.getLogger(__name__)


class CreateRoomPayload(WireModel):
    player_name: str
    game_settings: Optional[Dict[str, Any]] = None


class JoinRoomPayload(WireModel):
    player_name: str
    room_code: str


class UpdateSettingsPayload(WireModel):
    room_code: str
    game_settings: Dict[str, Any]


class RoomPayload(WireModel):
    room_code: str


class SubmitAnswerPayload(WireModel):
    room_code: str
    answer: Any = None
    time_remaining: Any = None  # must be numeric; checked by the match session


def error_message(kind: str, text: str) -> dict:
    return {"type": "error", "kind": kind, "message": text}


class SocketManager:
    """WebSocket connections, inbound parsing and outbound delivery."""

    def __init__(self, coordinator: Optional[GameCoordinator] = None):
        self.coordinator = coordinator
        self.connections: Dict[str, WebSocket] = {}
        # WS rate limiting: connection_id -> list of timestamps
        self.msg_timestamps: Dict[str, list] = {}
        self.allowed_origins: List[str] = []
        self.handlers: Dict[str, Callable[[str, dict], List[Outbound]]] = {
            "create-room": self._create_room,
            "join-room": self._join_room,
            "start-game": self._start_game,
            "submit-answer": self._submit_answer,
            "get-players": self._get_players,
            "get-room-stats": self._get_room_stats,
            "update-settings": self._update_settings,
            "get-server-stats": self._get_server_stats,
        }

    async def connect(self, websocket: WebSocket):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.connections[connection_id] = websocket
        logger.info("Client %s connected", connection_id)
        await websocket.send_json({"type": "connected", "connectionId": connection_id})

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    await websocket.send_json(error_message("validation", "Message too large"))
                    continue

                if not self._allow_message(connection_id):
                    await websocket.send_json(error_message("capacity", "Too many messages"))
                    continue

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", connection_id, data[:100])
                    await websocket.send_json(error_message("validation", "Invalid message format"))
                    continue
                if not isinstance(message, dict):
                    await websocket.send_json(error_message("validation", "Messages must be JSON objects"))
                    continue

                await self.handle_message(connection_id, message)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", connection_id)
        except Exception:
            logger.exception("WebSocket error for client %s", connection_id)
        finally:
            self.connections.pop(connection_id, None)
            self.msg_timestamps.pop(connection_id, None)
            await self.deliver(self.coordinator.disconnect(connection_id))

    def _allow_message(self, connection_id: str) -> bool:
        """Per-client rate limiting over a one second window."""
        now = time.time()
        timestamps = self.msg_timestamps.setdefault(connection_id, [])
        timestamps[:] = [t for t in timestamps if now - t < 1.0]
        if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
            return False
        timestamps.append(now)
        return True

    async def handle_message(self, connection_id: str, message: dict):
        msg_type = message.get("type")
        handler = self.handlers.get(msg_type)
        if handler is None:
            await self.send(connection_id, error_message("validation", f"Unknown message type: {msg_type}"))
            return

        try:
            outbounds = handler(connection_id, message)
        except GameError as e:
            logger.info("Rejected %s from %s: %s", msg_type, connection_id, e.message)
            await self.send(connection_id, error_message(e.kind, e.message))
            return
        except PydanticValidationError as e:
            logger.info("Malformed %s payload from %s: %s", msg_type, connection_id, e.errors()[0].get("msg"))
            await self.send(connection_id, error_message("validation", f"Invalid {msg_type} payload"))
            return

        await self.deliver(outbounds)

    def _create_room(self, connection_id: str, message: dict) -> List[Outbound]:
        payload = CreateRoomPayload.model_validate(message)
        return self.coordinator.create_room(connection_id, payload.player_name, payload.game_settings)

    def _join_room(self, connection_id: str, message: dict) -> List[Outbound]:
        payload = JoinRoomPayload.model_validate(message)
        return self.coordinator.join_room(connection_id, payload.player_name, payload.room_code)

    def _start_game(self, connection_id: str, message: dict) -> List[Outbound]:
        payload = RoomPayload.model_validate(message)
        return self.coordinator.start_game(connection_id, payload.room_code)

    def _submit_answer(self, connection_id: str, message: dict) -> List[Outbound]:
        payload = SubmitAnswerPayload.model_validate(message)
        return self.coordinator.submit_answer(connection_id, payload.room_code,
                                              payload.answer, payload.time_remaining)

    def _get_players(self, connection_id: str, message: dict) -> List[Outbound]:
        payload = RoomPayload.model_validate(message)
        return self.coordinator.get_players(connection_id, payload.room_code)

    def _get_room_stats(self, connection_id: str, message: dict) -> List[Outbound]:
        payload = RoomPayload.model_validate(message)
        return self.coordinator.get_room_stats(connection_id, payload.room_code)

    def _update_settings(self, connection_id: str, message: dict) -> List[Outbound]:
        payload = UpdateSettingsPayload.model_validate(message)
        return self.coordinator.update_settings(connection_id, payload.room_code, payload.game_settings)

    def _get_server_stats(self, connection_id: str, message: dict) -> List[Outbound]:
        return self.coordinator.get_server_stats(connection_id)

    async def send(self, connection_id: str, message: dict) -> bool:
        ws = self.connections.get(connection_id)
        if ws is None:
            return False
        try:
            await ws.send_json(message)
            return True
        except Exception:
            logger.warning("Failed to send %s to client %s", message.get("type"), connection_id)
            return False

    async def deliver(self, outbounds: Iterable[Outbound]):
        for outbound in outbounds:
            for recipient in outbound.recipients:
                await self.send(recipient, outbound.message)
