from fastapi import FastAPI, WebSocket
from contextlib import asynccontextmanager
from typing import List, Optional
import logging
import uvicorn

import config
config.setup_logging()

from game_coordinator import GameCoordinator
from player_roster import PlayerRoster
from question_generator import QuestionGenerator
from session_directory import SessionDirectory
from socket_manager import SocketManager

logger = logging.getLogger(__name__)


def parse_allowed_origins(raw: str) -> List[str]:
    return [o.strip() for o in raw.split(",") if o.strip()]


def build_app(directory: Optional[SessionDirectory] = None,
              roster: Optional[PlayerRoster] = None,
              generator: Optional[QuestionGenerator] = None,
              start_delay: float = config.GAME_START_DELAY_SECONDS,
              results_delay: float = config.RESULTS_DISPLAY_SECONDS,
              deadline_grace: float = config.ROUND_DEADLINE_GRACE_SECONDS,
              allowed_origins: Optional[List[str]] = None) -> FastAPI:
    """Wire up the game components and return the FastAPI app serving them."""
    if directory is None:
        directory = SessionDirectory()
    if roster is None:
        roster = PlayerRoster()
    if generator is None:
        generator = QuestionGenerator()

    socket_manager = SocketManager()
    coordinator = GameCoordinator(directory, roster, generator, socket_manager.deliver,
                                  start_delay=start_delay,
                                  results_delay=results_delay,
                                  deadline_grace=deadline_grace)
    socket_manager.coordinator = coordinator
    if allowed_origins is None:
        allowed_origins = parse_allowed_origins(config.ALLOWED_ORIGINS)
    socket_manager.allowed_origins = allowed_origins

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Math Battle backend")
        coordinator.start()
        yield
        logger.info("Shutting down Math Battle backend")
        await coordinator.shutdown()

    app = FastAPI(title="Math Battle Backend", lifespan=lifespan)
    app.state.coordinator = coordinator
    app.state.socket_manager = socket_manager

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await socket_manager.connect(websocket)

    return app


app = build_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
