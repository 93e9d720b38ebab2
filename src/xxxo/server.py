"""FastAPI service for XXXo: local and AI games, rooms, matchmaking and stats."""

from __future__ import annotations

import logging
import random
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Set, Tuple

from fastapi import (
    BackgroundTasks,
    FastAPI,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .ai import Difficulty, MoveSelector
from .config import settings
from .game import BOARD_SIZE, GameState, MoveError, MoveResult, Player, apply_move
from .rooms import MatchmakingQueue, RoomError, RoomRegistry, estimated_wait

logger = logging.getLogger(__name__)

HUMAN_PLAYER: Player = "X"
AI_PLAYER: Player = "O"
AI_THINK_DELAY: Tuple[float, float] = (
    settings.ai_think_delay_min,
    settings.ai_think_delay_max,
)


@dataclass
class GameSession:
    """A local or single-player game and, in AI mode, its computer opponent."""

    state: GameState
    mode: str
    ai: Optional[MoveSelector]
    move_log: List[Dict[str, object]] = field(default_factory=list)
    ai_pending: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


SESSIONS: Dict[str, GameSession] = {}
ROOMS = RoomRegistry(
    code_length=settings.room_code_length,
    ttl_seconds=settings.room_ttl_seconds,
    idle_ttl_seconds=settings.room_idle_ttl_seconds,
)
QUEUE = MatchmakingQueue()
# room code -> sockets following that room
ROOM_SUBSCRIBERS: Dict[str, Set[WebSocket]] = {}
# queue ticket -> socket waiting for a match
QUEUE_SOCKETS: Dict[str, WebSocket] = {}

app = FastAPI(title="XXXo", description="Five-by-five line scoring game")


@app.exception_handler(MoveError)
async def move_error_handler(request: Request, exc: MoveError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc), "reason": exc.reason})


@app.exception_handler(RoomError)
async def room_error_handler(request: Request, exc: RoomError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# ---------- Request models ----------


class NewGameRequest(BaseModel):
    """Request payload for starting a new game."""

    mode: Literal["local", "ai"] = "ai"
    difficulty: Optional[Difficulty] = Field(
        default=None, description="Computer strength in AI mode"
    )


class MoveRequest(BaseModel):
    row: int = Field(ge=0, lt=BOARD_SIZE)
    col: int = Field(ge=0, lt=BOARD_SIZE)


class PlayerNameRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    player_name: str = Field(alias="playerName", min_length=1, max_length=32)


class RoomPlayerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    player_id: str = Field(alias="playerId", min_length=1)


class RoomMoveRequest(RoomPlayerRequest):
    row: int = Field(ge=0, lt=BOARD_SIZE)
    col: int = Field(ge=0, lt=BOARD_SIZE)


# ---------- Local and AI sessions ----------


def _create_session(mode: str, difficulty: Optional[Difficulty]) -> Tuple[str, GameSession]:
    """Create a new game session and register it for later access."""

    ai: Optional[MoveSelector] = None
    if mode == "ai":
        ai = MoveSelector(
            player=AI_PLAYER,
            difficulty=difficulty or Difficulty(settings.default_difficulty),
        )
    session = GameSession(state=GameState(), mode=mode, ai=ai)
    session_id = uuid.uuid4().hex
    SESSIONS[session_id] = session
    logger.info("Game %s created (%s)", session_id, mode)
    return session_id, session


def _get_session(game_id: str) -> GameSession:
    try:
        return SESSIONS[game_id]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


def _record_move(
    game_id: str, session: GameSession, player: Player, row: int, col: int, result: MoveResult
) -> None:
    session.state = result.state
    session.move_log.append(
        {"player": player, "row": row, "col": col, "points": result.points}
    )
    if result.game_ended:
        logger.info(
            "Game %s finished (%s): X %d - O %d",
            game_id,
            result.end_reason.value if result.end_reason else "unknown",
            result.state.score.x,
            result.state.score.o,
        )


def _run_ai_turn(game_id: str) -> None:
    session = SESSIONS.get(game_id)
    if not session:
        return

    time.sleep(max(0.0, random.uniform(*AI_THINK_DELAY)))

    with session.lock:
        try:
            if not session.ai:
                return
            state = session.state
            if (
                state.game_active
                and state.current_player == session.ai.player
                and state.legal_moves()
            ):
                row, col = session.ai.choose(state)
                result = apply_move(state, (row, col), session.ai.player)
                _record_move(game_id, session, session.ai.player, row, col, result)
        finally:
            session.ai_pending = False


def _serialize_session(game_id: str, session: GameSession) -> Dict[str, object]:
    with session.lock:
        state = session.state
        payload = state.to_dict()
        payload.update(
            {
                "id": game_id,
                "mode": session.mode,
                "difficulty": session.ai.difficulty.value if session.ai else None,
                "legalMoves": [
                    {"row": row, "col": col} for row, col in state.legal_moves()
                ],
                "moveLog": list(session.move_log),
                "aiPending": session.ai_pending,
            }
        )
        return payload


def _apply_player_move(
    game_id: str,
    session: GameSession,
    row: int,
    col: int,
    background_tasks: Optional[BackgroundTasks] = None,
) -> None:
    should_schedule_ai = False
    with session.lock:
        if session.ai_pending:
            raise HTTPException(status_code=400, detail="AI is completing its move")

        player = HUMAN_PLAYER if session.ai else session.state.current_player
        try:
            result = apply_move(session.state, (row, col), player)
        except MoveError as exc:
            logger.debug("Game %s rejected move %s at %s: %s", game_id, player, (row, col), exc)
            raise
        _record_move(game_id, session, player, row, col, result)

        state = session.state
        should_schedule_ai = bool(
            session.ai
            and state.game_active
            and state.current_player == session.ai.player
        )
        if should_schedule_ai:
            session.ai_pending = True

    if should_schedule_ai and background_tasks is not None:
        background_tasks.add_task(_run_ai_turn, game_id)


@app.post("/api/game")
def create_game(request: NewGameRequest) -> Dict[str, object]:
    game_id, session = _create_session(request.mode, request.difficulty)
    return _serialize_session(game_id, session)


@app.get("/api/game/{game_id}")
def get_game(game_id: str) -> Dict[str, object]:
    session = _get_session(game_id)
    return _serialize_session(game_id, session)


@app.post("/api/game/{game_id}/move")
def make_move(
    game_id: str, request: MoveRequest, background_tasks: BackgroundTasks
) -> Dict[str, object]:
    session = _get_session(game_id)
    _apply_player_move(game_id, session, request.row, request.col, background_tasks)
    return _serialize_session(game_id, session)


# ---------- Rooms ----------


async def _broadcast_room(code: str, message_type: str) -> None:
    sockets = list(ROOM_SUBSCRIBERS.get(code, ()))
    if not sockets:
        return
    message = {"type": message_type, "room": ROOMS.describe(code)}
    for socket in sockets:
        try:
            await socket.send_json(message)
        except RuntimeError:
            ROOM_SUBSCRIBERS.get(code, set()).discard(socket)


async def _publish_move(code: str, result: MoveResult) -> None:
    await _broadcast_room(code, "game-ended" if result.game_ended else "room-updated")


def _move_response(code: str, result: MoveResult) -> Dict[str, object]:
    return {
        "room": ROOMS.describe(code),
        "pointsGained": result.points,
        "gameEnded": result.game_ended,
        "winner": result.winner,
        "endReason": result.end_reason.value if result.end_reason else None,
    }


@app.post("/api/rooms")
async def create_room(request: PlayerNameRequest) -> Dict[str, object]:
    room, host = ROOMS.create(request.player_name)
    return {"roomCode": room.code, "playerId": host.player_id, "symbol": "X"}


@app.post("/api/rooms/{code}/join")
async def join_room(code: str, request: PlayerNameRequest) -> Dict[str, object]:
    room, guest = ROOMS.join(code, request.player_name)
    await _broadcast_room(room.code, "room-updated")
    return {"roomCode": room.code, "playerId": guest.player_id, "symbol": "O"}


@app.post("/api/rooms/{code}/start")
async def start_room(code: str, request: RoomPlayerRequest) -> Dict[str, object]:
    room = ROOMS.start(code, request.player_id)
    await _broadcast_room(room.code, "room-updated")
    return ROOMS.describe(room.code)


@app.get("/api/rooms/{code}")
async def inspect_room(code: str) -> Dict[str, object]:
    return ROOMS.describe(code)


@app.post("/api/rooms/{code}/move")
async def room_move(code: str, request: RoomMoveRequest) -> Dict[str, object]:
    normalized = code.strip().upper()
    result = ROOMS.move(normalized, request.player_id, (request.row, request.col))
    await _publish_move(normalized, result)
    return _move_response(normalized, result)


async def _announce_departure(code: str, player_id: Optional[str]) -> None:
    if player_id is None:
        return
    name = ROOMS.player_name(code, player_id)
    if name is None:
        return
    logger.info("%s disconnected from room %s", name, code)
    message = {"type": "player-disconnected", "playerName": name}
    for socket in list(ROOM_SUBSCRIBERS.get(code, ())):
        try:
            await socket.send_json(message)
        except RuntimeError:
            ROOM_SUBSCRIBERS.get(code, set()).discard(socket)


@app.websocket("/ws/rooms/{code}")
async def room_channel(
    websocket: WebSocket,
    code: str,
    player_id: Optional[str] = Query(default=None, alias="playerId"),
) -> None:
    await websocket.accept()
    normalized = code.strip().upper()
    try:
        snapshot = ROOMS.describe(normalized)
    except RoomError as exc:
        await websocket.send_json({"type": "error", "message": str(exc)})
        await websocket.close()
        return

    ROOM_SUBSCRIBERS.setdefault(normalized, set()).add(websocket)
    await websocket.send_json({"type": "room-updated", "room": snapshot})

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"type": "error", "message": "Malformed JSON"})
                continue
            if not isinstance(message, dict) or message.get("type") != "make-move":
                await websocket.send_json(
                    {"type": "error", "message": "Unknown message type"}
                )
                continue
            try:
                request = RoomMoveRequest.model_validate(message)
                result = ROOMS.move(
                    normalized, request.player_id, (request.row, request.col)
                )
            except MoveError as exc:
                await websocket.send_json(
                    {"type": "error", "message": str(exc), "reason": exc.reason}
                )
                continue
            except (RoomError, ValidationError) as exc:
                await websocket.send_json({"type": "error", "message": str(exc)})
                continue
            if player_id is None:
                player_id = request.player_id
            await _publish_move(normalized, result)
    except WebSocketDisconnect:
        pass
    finally:
        subscribers = ROOM_SUBSCRIBERS.get(normalized)
        if subscribers is not None:
            subscribers.discard(websocket)
            if not subscribers:
                ROOM_SUBSCRIBERS.pop(normalized, None)
        await _announce_departure(normalized, player_id)


# ---------- Matchmaking ----------


async def _broadcast_queue_positions() -> None:
    for ticket_id, position in QUEUE.positions():
        socket = QUEUE_SOCKETS.get(ticket_id)
        if socket is None:
            continue
        try:
            await socket.send_json(
                {
                    "type": "queue-update",
                    "position": position,
                    "estimatedWait": estimated_wait(position),
                }
            )
        except RuntimeError:
            pass


def _leave_queue(ticket_id: Optional[str]) -> bool:
    if ticket_id is None:
        return False
    QUEUE_SOCKETS.pop(ticket_id, None)
    return QUEUE.leave(ticket_id)


@app.websocket("/ws/queue")
async def matchmaking(websocket: WebSocket) -> None:
    await websocket.accept()
    ticket_id: Optional[str] = None

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"type": "error", "message": "Malformed JSON"})
                continue
            kind = message.get("type") if isinstance(message, dict) else None

            if kind == "join-queue":
                name = str(message.get("playerName") or "").strip()
                if not name:
                    await websocket.send_json(
                        {"type": "error", "message": "A player name is required"}
                    )
                    continue
                _leave_queue(ticket_id)
                ticket, opponent = QUEUE.join(name)
                if opponent is None:
                    ticket_id = ticket.ticket_id
                    QUEUE_SOCKETS[ticket_id] = websocket
                    position = QUEUE.position(ticket_id) or 1
                    await websocket.send_json(
                        {
                            "type": "queue-joined",
                            "position": position,
                            "estimatedWait": estimated_wait(position),
                        }
                    )
                    logger.info("%s joined queue (position: %d)", name, position)
                else:
                    ticket_id = None
                    room, first, second = ROOMS.pair(opponent.name, ticket.name)
                    opponent_socket = QUEUE_SOCKETS.pop(opponent.ticket_id, None)
                    await websocket.send_json(
                        {
                            "type": "match-found",
                            "roomCode": room.code,
                            "playerId": second.player_id,
                            "symbol": "O",
                            "opponent": first.name,
                        }
                    )
                    if opponent_socket is not None:
                        try:
                            await opponent_socket.send_json(
                                {
                                    "type": "match-found",
                                    "roomCode": room.code,
                                    "playerId": first.player_id,
                                    "symbol": "X",
                                    "opponent": second.name,
                                }
                            )
                        except RuntimeError:
                            pass
                await _broadcast_queue_positions()

            elif kind == "leave-queue":
                left = _leave_queue(ticket_id)
                ticket_id = None
                await websocket.send_json({"type": "queue-left"})
                if left:
                    await _broadcast_queue_positions()

            else:
                await websocket.send_json(
                    {"type": "error", "message": "Unknown message type"}
                )
    except WebSocketDisconnect:
        pass
    finally:
        if _leave_queue(ticket_id):
            await _broadcast_queue_positions()


# ---------- Stats ----------


@app.get("/api/stats/{player_name}")
def player_stats(player_name: str) -> Dict[str, object]:
    stats = ROOMS.stats(player_name)
    return {"playerName": player_name, **stats.to_dict()}
