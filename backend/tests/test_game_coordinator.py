"""
Tests for game_coordinator.py: event handlers, scheduled transitions and
player removal. Delays are zero so scheduled steps run on the next loop turn.
"""
import sys
import os
import asyncio
import random

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from errors import (GameInProgress, InsufficientPlayers, InvalidName, InvalidRoomCode,
                    InvalidSettings, NoActiveQuestion, NotHost, RoomFull, RoomNotFound,
                    SessionNotFound)
from game_coordinator import GameCoordinator, plan_player_removal
from match_session import RoundPhase
from player_roster import PlayerRoster
from question_generator import QuestionGenerator
from session_directory import FINISHED, PLAYING, SHOWING_RESULTS, STARTING, WAITING, SessionDirectory


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class Recorder:
    """Stands in for the transport's deliver coroutine."""
    def __init__(self):
        self.outbounds = []

    async def __call__(self, outbounds):
        self.outbounds.extend(outbounds)

    def of_type(self, msg_type):
        return [o for o in self.outbounds if o.type == msg_type]


def make_coordinator(start_delay=0, results_delay=0, deadline_grace=0, seed=5):
    recorder = Recorder()
    coordinator = GameCoordinator(
        SessionDirectory(rng=random.Random(seed)),
        PlayerRoster(),
        QuestionGenerator(rng=random.Random(seed)),
        recorder,
        start_delay=start_delay,
        results_delay=results_delay,
        deadline_grace=deadline_grace,
    )
    return coordinator, recorder


def setup_room(coordinator, num_players=2, settings=None):
    settings = settings or {"totalQuestions": 3, "questionTime": 10}
    out = coordinator.create_room("p1", "Player 1", settings)
    code = out[0].message["roomCode"]
    for i in range(2, num_players + 1):
        coordinator.join_room(f"p{i}", f"Player {i}", code)
    return code


def types(outbounds):
    return [o.type for o in outbounds]


def wrong_option(question):
    return next(o for o in question.options if o != question.correct_answer)


async def wait_for(predicate, timeout=2.0):
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not met in time")


async def start_and_open(coordinator, recorder, code):
    coordinator.start_game("p1", code)
    await wait_for(lambda: recorder.of_type("new-question"))
    return coordinator.directory.rooms[code]


# ===========================================================================
# Lobby
# ===========================================================================

class TestCreateRoom:
    def test_room_created_for_host(self):
        coordinator, _ = make_coordinator()
        (out,) = coordinator.create_room("p1", "Alice", {"questionTime": 10})
        assert out.type == "room-created"
        assert out.recipients == ["p1"]
        assert out.message["player"]["isHost"] is True
        assert out.message["room"]["settings"]["questionTime"] == 10
        assert out.message["room"]["hostId"] == "p1"

    def test_invalid_name_creates_nothing(self):
        coordinator, _ = make_coordinator()
        with pytest.raises(InvalidName):
            coordinator.create_room("p1", "A")
        assert len(coordinator.directory) == 0
        assert "p1" not in coordinator.roster

    def test_invalid_settings_rolls_back_player(self):
        coordinator, _ = make_coordinator()
        with pytest.raises(InvalidSettings):
            coordinator.create_room("p1", "Alice", {"questionTime": 1})
        assert "p1" not in coordinator.roster
        assert coordinator.create_room("p1", "Alice")[0].type == "room-created"


class TestJoinRoom:
    def test_join_notifies_everyone(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=1)
        joined, broadcast = coordinator.join_room("p2", "Bob", code)
        assert joined.type == "room-joined" and joined.recipients == ["p2"]
        assert broadcast.type == "player-joined"
        assert broadcast.recipients == ["p1", "p2"]
        assert broadcast.message["totalPlayers"] == 2

    def test_code_is_case_insensitive(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=1)
        assert coordinator.join_room("p2", "Bob", code.lower())[0].message["roomCode"] == code

    def test_malformed_code(self):
        coordinator, _ = make_coordinator()
        with pytest.raises(InvalidRoomCode):
            coordinator.join_room("p2", "Bob", "12")

    def test_unknown_room(self):
        coordinator, _ = make_coordinator()
        with pytest.raises(RoomNotFound):
            coordinator.join_room("p2", "Bob", "ZZZZZZ")

    def test_full_room_leaves_roster_untouched(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=2, settings={"maxPlayers": 2})
        with pytest.raises(RoomFull):
            coordinator.join_room("p3", "Cara", code)
        assert "p3" not in coordinator.roster

    def test_name_validated(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=1)
        with pytest.raises(InvalidName):
            coordinator.join_room("p2", "<b>", code)

    @pytest.mark.asyncio
    async def test_join_rejected_mid_game(self):
        coordinator, _ = make_coordinator(start_delay=10)
        code = setup_room(coordinator)
        coordinator.start_game("p1", code)
        with pytest.raises(GameInProgress):
            coordinator.join_room("p3", "Cara", code)
        await coordinator.shutdown()


class TestInfoQueries:
    def test_get_players(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=3)
        (out,) = coordinator.get_players("p2", code)
        assert out.recipients == ["p2"]
        assert [p["id"] for p in out.message["players"]] == ["p1", "p2", "p3"]
        assert out.message["totalPlayers"] == 3

    def test_get_room_stats(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator)
        (out,) = coordinator.get_room_stats("p1", code)
        assert out.type == "room-stats"
        assert out.message["playersCount"] == 2
        assert out.message["maxPlayers"] == 30
        assert out.message["gameStatus"] == WAITING
        assert out.message["room"]["code"] == code
        assert out.message["room"]["settings"]["totalQuestions"] == 3

    def test_get_server_stats(self):
        coordinator, _ = make_coordinator()
        setup_room(coordinator, num_players=3)
        coordinator.create_room("p9", "Player 9")
        (out,) = coordinator.get_server_stats("p1")
        assert out.recipients == ["p1"]
        assert out.type == "server-stats"
        assert out.message["rooms"]["totalRooms"] == 2
        assert out.message["rooms"]["roomsByStatus"][WAITING] == 2
        assert out.message["players"]["totalPlayers"] == 4

    def test_unknown_room(self):
        coordinator, _ = make_coordinator()
        with pytest.raises(RoomNotFound):
            coordinator.get_players("p1", "ZZZZZZ")


class TestUpdateSettings:
    def test_host_updates_and_room_is_told(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator)
        (out,) = coordinator.update_settings("p1", code, {"questionTime": 45, "maxPlayers": 4})
        assert out.type == "settings-updated"
        assert out.recipients == ["p1", "p2"]
        assert out.message["settings"]["questionTime"] == 45
        assert out.message["settings"]["totalQuestions"] == 3
        assert out.message["maxPlayers"] == 4
        assert coordinator.directory.rooms[code].settings.question_time == 45

    def test_only_host(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator)
        with pytest.raises(NotHost):
            coordinator.update_settings("p2", code, {"questionTime": 45})
        assert coordinator.directory.rooms[code].settings.question_time == 10

    def test_invalid_values_rejected(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=3)
        with pytest.raises(InvalidSettings):
            coordinator.update_settings("p1", code, {"maxPlayers": 2})
        with pytest.raises(InvalidSettings):
            coordinator.update_settings("p1", code, {"questionTime": 1})

    @pytest.mark.asyncio
    async def test_locked_once_game_starts(self):
        coordinator, _ = make_coordinator(start_delay=10)
        code = setup_room(coordinator)
        coordinator.start_game("p1", code)
        with pytest.raises(GameInProgress):
            coordinator.update_settings("p1", code, {"questionTime": 45})
        await coordinator.shutdown()


# ===========================================================================
# Game flow
# ===========================================================================

class TestStartGame:
    def test_only_host(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator)
        with pytest.raises(NotHost):
            coordinator.start_game("p2", code)

    def test_needs_two_players(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=1)
        with pytest.raises(InsufficientPlayers):
            coordinator.start_game("p1", code)

    @pytest.mark.asyncio
    async def test_start_then_first_question(self):
        coordinator, recorder = make_coordinator()
        code = setup_room(coordinator)
        (out,) = coordinator.start_game("p1", code)
        room = coordinator.directory.rooms[code]
        assert out.type == "game-started"
        assert out.message["totalQuestions"] == 3
        assert room.status == STARTING

        await wait_for(lambda: recorder.of_type("new-question"))
        (question,) = recorder.of_type("new-question")
        assert room.status == PLAYING
        assert question.recipients == ["p1", "p2"]
        assert question.message["questionNumber"] == 1
        assert question.message["timeLimit"] == 10
        assert "correctAnswer" not in question.message["question"]
        assert len(question.message["question"]["options"]) == 4
        await coordinator.shutdown()

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self):
        coordinator, _ = make_coordinator(start_delay=10)
        code = setup_room(coordinator)
        coordinator.start_game("p1", code)
        with pytest.raises(GameInProgress):
            coordinator.start_game("p1", code)
        await coordinator.shutdown()


class TestSubmitAnswer:
    def test_no_game(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator)
        with pytest.raises(SessionNotFound) as exc:
            coordinator.submit_answer("p1", code, "1", 5)
        assert exc.value.kind == "not_found"

    @pytest.mark.asyncio
    async def test_game_starting_has_no_question_yet(self):
        coordinator, _ = make_coordinator(start_delay=10)
        code = setup_room(coordinator)
        coordinator.start_game("p1", code)
        with pytest.raises(NoActiveQuestion):
            coordinator.submit_answer("p1", code, "1", 5)
        await coordinator.shutdown()

    @pytest.mark.asyncio
    async def test_answer_result_is_unicast(self):
        coordinator, recorder = make_coordinator()
        code = setup_room(coordinator)
        room = await start_and_open(coordinator, recorder, code)
        question = room.match.current_question

        (result,) = coordinator.submit_answer("p1", code, question.correct_answer, 5)
        assert result.type == "answer-result"
        assert result.recipients == ["p1"]
        assert result.message["correct"] is True
        assert result.message["pointsEarned"] > 0
        assert result.message["totalScore"] == result.message["pointsEarned"]
        await coordinator.shutdown()

    @pytest.mark.asyncio
    async def test_last_answer_broadcasts_round_results(self):
        coordinator, recorder = make_coordinator(results_delay=10)
        code = setup_room(coordinator)
        room = await start_and_open(coordinator, recorder, code)
        question = room.match.current_question

        coordinator.submit_answer("p1", code, question.correct_answer, 5)
        outbounds = coordinator.submit_answer("p2", code, wrong_option(question), 5)
        assert types(outbounds) == ["answer-result", "round-results"]
        results = outbounds[1]
        assert results.recipients == ["p1", "p2"]
        assert results.message["correctAnswer"] == question.correct_answer
        assert results.message["roundRanking"][0]["playerId"] == "p1"
        assert room.status == SHOWING_RESULTS
        await coordinator.shutdown()


class TestFullGame:
    @pytest.mark.asyncio
    async def test_three_question_game(self):
        coordinator, recorder = make_coordinator()
        code = setup_room(coordinator, settings={"totalQuestions": 3, "questionTime": 10})
        room = coordinator.directory.rooms[code]
        coordinator.start_game("p1", code)

        for round_number in range(1, 4):
            await wait_for(lambda: len(recorder.of_type("new-question")) == round_number)
            question = room.match.current_question
            assert recorder.of_type("new-question")[-1].message["questionNumber"] == round_number
            coordinator.submit_answer("p1", code, question.correct_answer, 8)
            outbounds = coordinator.submit_answer("p2", code, wrong_option(question), 8)
            assert "round-results" in types(outbounds)

        await wait_for(lambda: recorder.of_type("game-finished"))
        (finished,) = recorder.of_type("game-finished")
        assert finished.recipients == ["p1", "p2"]
        assert finished.message["winner"]["playerId"] == "p1"
        assert len(finished.message["roundHistory"]) == 3
        assert finished.message["finalRanking"][1]["totalScore"] == 0
        assert room.status == FINISHED
        assert room.match is None
        assert room.last_results.winner.player_id == "p1"

    @pytest.mark.asyncio
    async def test_rematch_after_finish(self):
        coordinator, recorder = make_coordinator()
        code = setup_room(coordinator, settings={"totalQuestions": 1, "questionTime": 10})
        room = await start_and_open(coordinator, recorder, code)
        question = room.match.current_question
        coordinator.submit_answer("p1", code, question.correct_answer, 8)
        coordinator.submit_answer("p2", code, question.correct_answer, 8)
        await wait_for(lambda: room.status == FINISHED)

        coordinator.join_room("p3", "Cara", code)
        coordinator.start_game("p1", code)
        await wait_for(lambda: len(recorder.of_type("new-question")) == 2)
        assert room.match.active_players == ["p1", "p2", "p3"]
        assert coordinator.roster.get_player("p1").score == 0
        await coordinator.shutdown()


class TestScheduledTransitions:
    @pytest.mark.asyncio
    async def test_expire_closes_stalled_round(self):
        coordinator, recorder = make_coordinator(results_delay=10)
        code = setup_room(coordinator)
        room = await start_and_open(coordinator, recorder, code)
        session = room.match
        coordinator.submit_answer("p1", code, session.current_question.correct_answer, 5)

        await coordinator._expire(code, session, session.round_index)
        (results,) = recorder.of_type("round-results")
        assert results.message["expired"] is True
        assert results.message["stats"]["playersAnswered"] == 1
        assert room.status == SHOWING_RESULTS
        assert coordinator.roster.get_player("p2").streak == 0
        await coordinator.shutdown()

    @pytest.mark.asyncio
    async def test_deadline_fires_on_its_own(self):
        coordinator, recorder = make_coordinator(results_delay=10, deadline_grace=-9.95)
        code = setup_room(coordinator)
        await start_and_open(coordinator, recorder, code)
        await wait_for(lambda: recorder.of_type("round-results"))
        assert recorder.of_type("round-results")[0].message["expired"] is True
        await coordinator.shutdown()

    @pytest.mark.asyncio
    async def test_stale_expire_after_round_closed_is_noop(self):
        coordinator, recorder = make_coordinator(results_delay=10)
        code = setup_room(coordinator)
        room = await start_and_open(coordinator, recorder, code)
        session = room.match
        question = session.current_question
        coordinator.submit_answer("p1", code, question.correct_answer, 5)
        coordinator.submit_answer("p2", code, question.correct_answer, 5)

        await coordinator._expire(code, session, 0)
        assert len(session.history) == 1
        assert recorder.of_type("round-results") == []
        await coordinator.shutdown()

    @pytest.mark.asyncio
    async def test_callbacks_after_close_are_noops(self):
        coordinator, recorder = make_coordinator(start_delay=10)
        code = setup_room(coordinator)
        coordinator.start_game("p1", code)
        session = coordinator.directory.rooms[code].match

        coordinator.disconnect("p1")
        coordinator.disconnect("p2")
        assert code not in coordinator.directory
        assert session.closed

        await coordinator._open_first_round(code, session)
        await coordinator._advance(code, session, 0)
        assert recorder.outbounds == []
        assert session.phase == RoundPhase.INITIALIZING


# ===========================================================================
# Departures
# ===========================================================================

class TestPlanPlayerRemoval:
    def test_host_leaves(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=3)
        plan = plan_player_removal(coordinator.directory.rooms[code], "p1")
        assert plan.new_host_id == "p2"
        assert not plan.close_room
        assert not plan.leave_match

    def test_guest_leaves(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=3)
        plan = plan_player_removal(coordinator.directory.rooms[code], "p3")
        assert plan.new_host_id is None
        assert not plan.close_room

    def test_last_player_leaves(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=1)
        plan = plan_player_removal(coordinator.directory.rooms[code], "p1")
        assert plan.close_room
        assert plan.new_host_id is None

    @pytest.mark.asyncio
    async def test_leave_match_during_game(self):
        coordinator, _ = make_coordinator(start_delay=10)
        code = setup_room(coordinator)
        coordinator.start_game("p1", code)
        plan = plan_player_removal(coordinator.directory.rooms[code], "p2")
        assert plan.leave_match
        await coordinator.shutdown()

    def test_plan_does_not_mutate(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator)
        room = coordinator.directory.rooms[code]
        plan_player_removal(room, "p1")
        assert room.host_id == "p1"
        assert room.player_ids == ["p1", "p2"]


class TestDisconnect:
    def test_host_disconnect_transfers_host(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=3)
        outbounds = coordinator.disconnect("p1")
        room = coordinator.directory.rooms[code]
        assert types(outbounds) == ["player-disconnected", "host-changed"]
        assert outbounds[0].recipients == ["p2", "p3"]
        assert outbounds[1].message["newHost"] == "Player 2"
        assert room.host_id == "p2"
        assert coordinator.roster.get_player("p2").is_host
        assert "p1" not in coordinator.roster

    def test_guest_disconnect(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=3)
        outbounds = coordinator.disconnect("p3")
        assert types(outbounds) == ["player-disconnected"]
        assert outbounds[0].message["totalPlayers"] == 2
        assert coordinator.directory.rooms[code].host_id == "p1"

    def test_last_player_closes_room(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator, num_players=1)
        assert coordinator.disconnect("p1") == []
        assert code not in coordinator.directory
        assert len(coordinator.roster) == 0

    def test_unknown_connection(self):
        coordinator, _ = make_coordinator()
        assert coordinator.disconnect("nobody") == []

    def test_disconnect_twice(self):
        coordinator, _ = make_coordinator()
        setup_room(coordinator, num_players=2)
        coordinator.disconnect("p2")
        assert coordinator.disconnect("p2") == []

    def test_cleanup_failure_still_removes_player(self, monkeypatch):
        coordinator, _ = make_coordinator()
        setup_room(coordinator)

        def broken(player_id):
            raise RuntimeError("directory unavailable")

        monkeypatch.setattr(coordinator.directory, "find_room_by_player", broken)
        assert coordinator.disconnect("p2") == []
        assert "p2" not in coordinator.roster

    @pytest.mark.asyncio
    async def test_disconnect_completes_round(self):
        coordinator, recorder = make_coordinator(results_delay=10)
        code = setup_room(coordinator, num_players=3)
        room = await start_and_open(coordinator, recorder, code)
        question = room.match.current_question
        coordinator.submit_answer("p1", code, question.correct_answer, 5)
        coordinator.submit_answer("p2", code, question.correct_answer, 5)

        outbounds = coordinator.disconnect("p3")
        assert types(outbounds) == ["player-disconnected", "round-results"]
        assert outbounds[1].message["stats"]["totalPlayers"] == 2
        assert room.match.phase == RoundPhase.ROUND_COMPLETE
        await coordinator.shutdown()

    @pytest.mark.asyncio
    async def test_everyone_leaving_mid_game_closes_room(self):
        coordinator, recorder = make_coordinator()
        code = setup_room(coordinator)
        room = await start_and_open(coordinator, recorder, code)
        session = room.match
        coordinator.disconnect("p1")
        coordinator.disconnect("p2")
        assert code not in coordinator.directory
        assert session.closed
        assert session.pending_tasks() == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_shutdown_closes_rooms(self):
        coordinator, _ = make_coordinator(start_delay=10)
        code = setup_room(coordinator)
        coordinator.start()
        coordinator.start_game("p1", code)
        session = coordinator.directory.rooms[code].match
        await coordinator.shutdown()
        assert len(coordinator.directory) == 0
        assert session.closed

    def test_expired_room_players_dropped(self):
        coordinator, _ = make_coordinator()
        code = setup_room(coordinator)
        room = coordinator.directory.close_session(code)
        coordinator.handle_expired_room(room)
        assert len(coordinator.roster) == 0
