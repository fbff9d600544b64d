"""
Web Application
FastAPI live view of a running tournament
"""

import asyncio
import logging
import threading
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from .tournament import Tournament

logger = logging.getLogger(__name__)


# Pydantic models
class GameSnapshot(BaseModel):
    round: int
    white: str
    black: str
    size: int
    komi: float
    opening: Optional[str] = None
    tps: str
    moves: List[str]
    time_white: Optional[int] = None
    time_black: Optional[int] = None


class StandingRow(BaseModel):
    engine: str
    games: int
    wins: int
    losses: int
    draws: int
    points: float
    wins_white: int
    wins_black: int
    faults: int
    score_percentage: float


# WebSocket connection manager
class ConnectionManager:
    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"WebSocket connected. Total: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        logger.info(f"WebSocket disconnected. Total: {len(self.active_connections)}")


def create_app(tournament: Tournament, push_interval: float = 0.2) -> FastAPI:
    """
    Build the live-view application for one tournament

    Args:
        tournament: Tournament being played (read only)
        push_interval: Seconds between WebSocket snapshots
    """
    app = FastAPI(title=f"takbench: {tournament.name}")
    manager = ConnectionManager()

    @app.get("/api/standings", response_model=List[StandingRow])
    async def get_standings():
        """Current standings"""
        return tournament.get_standings()

    @app.get("/api/games", response_model=List[GameSnapshot])
    async def get_games():
        """Games in progress"""
        return tournament.live_games()

    @app.get("/api/games/{round_number}", response_model=GameSnapshot)
    async def get_game(round_number: int):
        """One game in progress by round number"""
        game = tournament.live_game(round_number)
        if game is None:
            raise HTTPException(status_code=404, detail=f"Round {round_number} is not being played")
        return game

    @app.get("/api/results")
    async def get_results():
        """Complete results so far"""
        return tournament.get_results()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Push live snapshots until the client goes away"""
        await manager.connect(websocket)
        try:
            while True:
                await websocket.send_json({
                    "type": "live",
                    "games": tournament.live_games(),
                    "standings": tournament.get_standings(),
                })
                # Anything the client sends is ignored; a close ends the loop
                try:
                    await asyncio.wait_for(websocket.receive_text(), timeout=push_interval)
                except asyncio.TimeoutError:
                    continue
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    return app


def serve_in_background(app: FastAPI, host: str = "127.0.0.1", port: int = 8000) -> threading.Thread:
    """Run uvicorn on a daemon thread so the tournament keeps the main thread"""
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
    thread = threading.Thread(target=server.run, name="takbench-http", daemon=True)
    thread.start()
    logger.info(f"Live view at http://{host}:{port}/api/games")
    return thread
