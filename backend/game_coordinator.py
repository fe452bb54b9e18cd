import functools
import logging
from typing import Any, Awaitable, Callable, List, NamedTuple, Optional

import config
from errors import GameError, GameInProgress, InvalidRoomCode, NotHost, RoomFull, SessionNotFound
from match_session import MatchSession, RoundPhase
from models import Outbound, Player, RoundResult
from player_roster import PlayerRoster
from question_generator import QuestionGenerator
from session_directory import (FINISHED, PLAYING, SHOWING_RESULTS, STARTING, WAITING, Room,
                               SessionDirectory)

logger = logging.getLogger(__name__)

Deliver = Callable[[List[Outbound]], Awaitable[None]]


class RemovalPlan(NamedTuple):
    room_code: str
    player_id: str
    new_host_id: Optional[str]
    close_room: bool
    leave_match: bool


def plan_player_removal(room: Room, player_id: str) -> RemovalPlan:
    """Work out what removing ``player_id`` from ``room`` implies, without doing it."""
    remaining = [pid for pid in room.player_ids if pid != player_id]
    new_host_id = remaining[0] if room.host_id == player_id and remaining else None
    return RemovalPlan(
        room_code=room.code,
        player_id=player_id,
        new_host_id=new_host_id,
        close_room=not remaining,
        leave_match=room.match is not None and room.match.is_active(player_id),
    )


def build_message(msg_type: str, **payload: Any) -> dict:
    return {"type": msg_type, **payload}


class GameCoordinator:
    """Turns inbound game events into state changes and addressed outbound messages.

    Every handler mutates state synchronously and returns the messages to send,
    so each event is applied as a unit before the transport awaits anything.
    Scheduled transitions run as tasks owned by the room's MatchSession.
    """

    def __init__(self, directory: SessionDirectory, roster: PlayerRoster, generator: QuestionGenerator,
                 deliver: Deliver,
                 start_delay: float = config.GAME_START_DELAY_SECONDS,
                 results_delay: float = config.RESULTS_DISPLAY_SECONDS,
                 deadline_grace: float = config.ROUND_DEADLINE_GRACE_SECONDS):
        self.directory = directory
        self.roster = roster
        self.generator = generator
        self.deliver = deliver
        self.start_delay = start_delay
        self.results_delay = results_delay
        self.deadline_grace = deadline_grace

    # ------------------------------------------------------------------
    # Addressing
    # ------------------------------------------------------------------

    @staticmethod
    def to_player(player_id: str, msg_type: str, **payload: Any) -> Outbound:
        return Outbound(recipients=[player_id], message=build_message(msg_type, **payload))

    @staticmethod
    def to_room(room: Room, msg_type: str, **payload: Any) -> Outbound:
        return Outbound(recipients=room.player_ids, message=build_message(msg_type, **payload))

    # ------------------------------------------------------------------
    # Lobby
    # ------------------------------------------------------------------

    def create_room(self, connection_id: str, player_name: str, game_settings: Optional[dict] = None) -> List[Outbound]:
        player = self.roster.create_player(connection_id, player_name, is_host=True)
        try:
            room = self.directory.create_session(connection_id, game_settings)
            self.directory.add_player(room.code, player)
        except GameError:
            self.roster.remove(connection_id)
            raise

        logger.info("Room %s created by %s", room.code, player.name)
        return [self.to_player(connection_id, "room-created",
                               roomCode=room.code, player=player.public(), room=room.snapshot())]

    def join_room(self, connection_id: str, player_name: str, room_code: str) -> List[Outbound]:
        code = room_code.strip().upper() if isinstance(room_code, str) else room_code
        if not self.directory.is_valid_room_code(code):
            raise InvalidRoomCode()
        room = self.directory.require_session(code)
        if room.status not in (WAITING, FINISHED):
            raise GameInProgress("Game already in progress")
        if room.is_full:
            raise RoomFull(f"Room {code} is full ({room.max_players} players max)")

        player = self.roster.create_player(connection_id, player_name)
        try:
            self.directory.add_player(code, player)
        except GameError:
            self.roster.remove(connection_id)
            raise

        logger.info("%s joined room %s", player.name, code)
        return [
            self.to_player(connection_id, "room-joined",
                           roomCode=code, player=player.public(), room=room.snapshot()),
            self.to_room(room, "player-joined", player=player.public(), totalPlayers=len(room.players)),
        ]

    def get_players(self, connection_id: str, room_code: str) -> List[Outbound]:
        room = self.directory.require_session(room_code)
        return [self.to_player(connection_id, "players-list",
                               players=[p.public() for p in room.players], totalPlayers=len(room.players))]

    def get_room_stats(self, connection_id: str, room_code: str) -> List[Outbound]:
        room = self.directory.require_session(room_code)
        return [self.to_player(connection_id, "room-stats",
                               playersCount=len(room.players),
                               maxPlayers=room.max_players,
                               gameStatus=room.status,
                               settings=room.settings.to_wire(),
                               room=self.directory.public_info(room.code))]

    def update_settings(self, connection_id: str, room_code: str, game_settings: Optional[dict]) -> List[Outbound]:
        room = self.directory.require_session(room_code)
        if room.host_id != connection_id:
            raise NotHost("Only the host can change the game settings")
        settings = self.directory.update_settings(room.code, game_settings)
        return [self.to_room(room, "settings-updated", settings=settings.to_wire(),
                             maxPlayers=room.max_players)]

    def get_server_stats(self, connection_id: str) -> List[Outbound]:
        return [self.to_player(connection_id, "server-stats",
                               rooms=self.directory.stats(), players=self.roster.general_stats())]

    # ------------------------------------------------------------------
    # Game flow
    # ------------------------------------------------------------------

    def start_game(self, connection_id: str, room_code: str) -> List[Outbound]:
        room = self.directory.require_session(room_code)
        session = MatchSession.initialize(room, connection_id, self.roster, self.generator)

        room.match = session
        room.status = STARTING
        session.schedule(self.start_delay, functools.partial(self._open_first_round, room.code, session),
                         name="start")

        logger.info("Game starting in room %s (%d players, %d questions)",
                    room.code, len(room.players), session.total_questions)
        return [self.to_room(room, "game-started",
                             message="The game is starting...", totalQuestions=session.total_questions)]

    def submit_answer(self, connection_id: str, room_code: str, answer: Any, time_remaining: Any) -> List[Outbound]:
        room = self.directory.require_session(room_code)
        session = room.match
        if session is None:
            raise SessionNotFound(f"No game is running in room {room.code}")

        outcome = session.submit_answer(connection_id, answer, time_remaining)
        outbounds = [self.to_player(connection_id, "answer-result",
                                    correct=outcome.answer.is_correct,
                                    pointsEarned=outcome.answer.points_earned,
                                    totalScore=outcome.score.new_score,
                                    streak=outcome.score.current_streak)]
        if outcome.round_result is not None:
            outbounds.extend(self._round_completed(room, session, outcome.round_result))
        return outbounds

    def _question_message(self, room: Room, session: MatchSession) -> Outbound:
        return self.to_room(room, "new-question",
                            question=session.current_question.player_view(),
                            questionNumber=session.question_number,
                            totalQuestions=session.total_questions,
                            timeLimit=session.time_limit)

    def _arm_deadline(self, room: Room, session: MatchSession):
        session.schedule(session.time_limit + self.deadline_grace,
                         functools.partial(self._expire, room.code, session, session.round_index),
                         name="deadline")

    def _round_completed(self, room: Room, session: MatchSession, result: RoundResult) -> List[Outbound]:
        room.status = SHOWING_RESULTS
        session.schedule(self.results_delay,
                         functools.partial(self._advance, room.code, session, session.round_index),
                         name="advance")
        return [self.to_room(room, "round-results", **result.to_wire())]

    def _live_room(self, room_code: str, session: MatchSession) -> Optional[Room]:
        """The room, if it still exists and still runs ``session``."""
        room = self.directory.rooms.get(room_code)
        if room is None or room.match is not session or session.closed:
            logger.debug("Ignoring stale callback for room %s", room_code)
            return None
        return room

    async def _open_first_round(self, room_code: str, session: MatchSession):
        room = self._live_room(room_code, session)
        if room is None or session.phase != RoundPhase.INITIALIZING:
            return
        session.begin_round()
        room.status = PLAYING
        self._arm_deadline(room, session)
        await self.deliver([self._question_message(room, session)])

    async def _expire(self, room_code: str, session: MatchSession, round_index: int):
        room = self._live_room(room_code, session)
        if room is None or session.phase != RoundPhase.AWAITING_ANSWERS or session.round_index != round_index:
            return
        result = session.expire_round()
        await self.deliver(self._round_completed(room, session, result))

    async def _advance(self, room_code: str, session: MatchSession, round_index: int):
        room = self._live_room(room_code, session)
        if room is None or session.phase != RoundPhase.ROUND_COMPLETE or session.round_index != round_index:
            return

        if session.advance() is not None:
            room.status = PLAYING
            self._arm_deadline(room, session)
            await self.deliver([self._question_message(room, session)])
            return

        results = session.final_results()
        room.status = FINISHED
        room.last_results = results
        room.match = None
        session.close()
        winner = results.winner.player_name if results.winner else "nobody"
        logger.info("Game finished in room %s, winner: %s", room.code, winner)
        await self.deliver([self.to_room(room, "game-finished", **results.to_wire())])

    # ------------------------------------------------------------------
    # Departures
    # ------------------------------------------------------------------

    def disconnect(self, connection_id: str) -> List[Outbound]:
        player = self.roster.get_player(connection_id)
        if player is None:
            return []

        outbounds: List[Outbound] = []
        try:
            room = self.directory.find_room_by_player(connection_id)
            if room is not None:
                outbounds = self._remove_from_room(room, player)
        except Exception:
            logger.exception("Error cleaning up after %s disconnected", connection_id)
        finally:
            self.roster.remove(connection_id)
        return outbounds

    def _remove_from_room(self, room: Room, player: Player) -> List[Outbound]:
        plan = plan_player_removal(room, player.id)
        session = room.match

        self.directory.remove_player(room.code, player.id)
        if plan.close_room:
            self.directory.close_session(room.code)
            logger.info("Room %s closed, last player left", room.code)
            return []

        outbounds = [self.to_room(room, "player-disconnected", playerId=player.id,
                                  playerName=player.name, totalPlayers=len(room.players))]

        if plan.new_host_id is not None:
            room.host_id = plan.new_host_id
            self.roster.transfer_host(plan.new_host_id)
            new_host = room.get_player(plan.new_host_id)
            outbounds.append(self.to_room(room, "host-changed",
                                          newHost=new_host.name, newHostId=new_host.id))

        if plan.leave_match:
            result = session.remove_player(player.id)
            if result is not None:
                outbounds.extend(self._round_completed(room, session, result))
        return outbounds

    def handle_expired_room(self, room: Room):
        """Drop the players of a room closed for inactivity."""
        for player_id in room.player_ids:
            self.roster.remove(player_id)
        logger.info("Room %s expired with %d players", room.code, len(room.players))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        self.directory.start_cleanup_loop(self.handle_expired_room)

    async def shutdown(self):
        await self.directory.stop_cleanup_loop()
        for code in list(self.directory.rooms):
            self.directory.close_session(code)
        logger.info("Game coordinator shut down")
