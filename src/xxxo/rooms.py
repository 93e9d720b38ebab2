"""In-memory rooms, matchmaking queue and player stats for networked XXXo."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .game import GameState, MoveResult, PLAYERS, Player, Position, apply_move

logger = logging.getLogger(__name__)

WAITING, PLAYING, FINISHED = "waiting", "playing", "finished"
MAX_PLAYERS = 2


class RoomError(Exception):
    """A room operation that cannot be honoured."""

    status_code = 400


class RoomNotFoundError(RoomError):
    status_code = 404


class RoomFullError(RoomError):
    status_code = 409


class RoomStateError(RoomError):
    status_code = 409


class RoomAccessError(RoomError):
    status_code = 403


@dataclass
class Participant:
    player_id: str
    name: str


@dataclass
class Room:
    """A lobby of up to two players and, once started, their game."""

    code: str
    players: List[Participant] = field(default_factory=list)
    status: str = WAITING
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    state: Optional[GameState] = None

    @property
    def host(self) -> Participant:
        return self.players[0]

    def participant(self, player_id: str) -> Optional[Participant]:
        for participant in self.players:
            if participant.player_id == player_id:
                return participant
        return None

    def mark_of(self, player_id: str) -> Player:
        """The host plays X, the second player O."""
        for mark, participant in zip(PLAYERS, self.players):
            if participant.player_id == player_id:
                return mark
        raise RoomAccessError("You are not part of this room")

    def to_dict(self) -> Dict[str, object]:
        return {
            "roomCode": self.code,
            "status": self.status,
            "hostName": self.host.name,
            "players": [
                {"name": p.name, "symbol": mark}
                for mark, p in zip(PLAYERS, self.players)
            ],
            "maxPlayers": MAX_PLAYERS,
            "gameState": self.state.to_dict() if self.state is not None else None,
        }


@dataclass
class PlayerStats:
    games_played: int = 0
    games_won: int = 0
    total_score: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "gamesPlayed": self.games_played,
            "gamesWon": self.games_won,
            "totalScore": self.total_score,
        }


def _new_player_id() -> str:
    return uuid.uuid4().hex


class RoomRegistry:
    """Owns every room; each room's game is only mutated under the lock."""

    def __init__(
        self,
        code_length: int = 6,
        ttl_seconds: float = 60 * 30,
        idle_ttl_seconds: float = 60 * 60 * 2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.code_length = code_length
        self.ttl_seconds = ttl_seconds
        self.idle_ttl_seconds = idle_ttl_seconds
        self._clock = clock
        self._rooms: Dict[str, Room] = {}
        self._stats: Dict[str, PlayerStats] = {}
        self._lock = threading.Lock()

    # ---- lifecycle ----

    def create(self, player_name: str) -> Tuple[Room, Participant]:
        host = Participant(player_id=_new_player_id(), name=player_name)
        with self._lock:
            room = self._allocate([host])
        logger.info("Room %s created by %s", room.code, player_name)
        return room, host

    def join(self, code: str, player_name: str) -> Tuple[Room, Participant]:
        with self._lock:
            room = self._require(code)
            if room.status != WAITING:
                raise RoomStateError("Game already started")
            if len(room.players) >= MAX_PLAYERS:
                raise RoomFullError("Room is full")
            guest = Participant(player_id=_new_player_id(), name=player_name)
            room.players.append(guest)
        logger.info("%s joined room %s", player_name, room.code)
        return room, guest

    def start(self, code: str, player_id: str) -> Room:
        with self._lock:
            room = self._require(code)
            if room.host.player_id != player_id:
                raise RoomAccessError("Only the host can start the game")
            if room.status != WAITING:
                raise RoomStateError("Game already started")
            if len(room.players) != MAX_PLAYERS:
                raise RoomStateError("Waiting for a second player")
            room.state = GameState()
            room.status = PLAYING
            room.last_activity = self._clock()
        logger.info("Room %s started", room.code)
        return room

    def pair(self, first_name: str, second_name: str) -> Tuple[Room, Participant, Participant]:
        """Create an already started room for two matched players."""
        first = Participant(player_id=_new_player_id(), name=first_name)
        second = Participant(player_id=_new_player_id(), name=second_name)
        with self._lock:
            room = self._allocate([first, second])
            room.state = GameState()
            room.status = PLAYING
        logger.info("Match created: %s vs %s (room %s)", first_name, second_name, room.code)
        return room, first, second

    # ---- play ----

    def move(self, code: str, player_id: str, pos: Position) -> MoveResult:
        with self._lock:
            room = self._require(code)
            mark = room.mark_of(player_id)
            if room.state is None:
                raise RoomStateError("Game has not started")
            result = apply_move(room.state, pos, mark)
            room.state = result.state
            room.last_activity = self._clock()
            if result.game_ended:
                room.status = FINISHED
                self._record_result(room)
        if result.game_ended:
            logger.info(
                "Room %s finished (%s): X %d - O %d",
                code,
                result.end_reason.value if result.end_reason else "unknown",
                result.state.score.x,
                result.state.score.o,
            )
        return result

    # ---- queries ----

    def get(self, code: str) -> Room:
        with self._lock:
            return self._require(code)

    def describe(self, code: str) -> Dict[str, object]:
        with self._lock:
            return self._require(code).to_dict()

    def player_name(self, code: str, player_id: str) -> Optional[str]:
        """Name of a participant, or None once the room or player is gone."""
        with self._lock:
            room = self._rooms.get(code.strip().upper())
            participant = room.participant(player_id) if room else None
        return participant.name if participant else None

    def stats(self, player_name: str) -> PlayerStats:
        with self._lock:
            return self._stats.get(player_name, PlayerStats())

    # ---- helpers ----

    def _allocate(self, players: List[Participant]) -> Room:
        self._cleanup()
        for _ in range(10):
            code = uuid.uuid4().hex[: self.code_length].upper()
            if code not in self._rooms:
                now = self._clock()
                room = Room(code=code, players=players, created_at=now, last_activity=now)
                self._rooms[code] = room
                return room
        raise RoomError("Unable to allocate room")

    def _require(self, code: str) -> Room:
        self._cleanup()
        room = self._rooms.get(code.strip().upper())
        if room is None:
            raise RoomNotFoundError("Room not found")
        return room

    def _cleanup(self) -> None:
        """Drop rooms past their TTL; games in play expire after sitting idle."""
        now = self._clock()
        expired = [
            code
            for code, room in self._rooms.items()
            if (
                now - room.last_activity >= self.idle_ttl_seconds
                if room.status == PLAYING
                else now - room.created_at >= self.ttl_seconds
            )
        ]
        for code in expired:
            self._rooms.pop(code, None)
            logger.info("Room %s expired", code)

    def _record_result(self, room: Room) -> None:
        assert room.state is not None
        for mark, participant in zip(PLAYERS, room.players):
            stats = self._stats.setdefault(participant.name, PlayerStats())
            stats.games_played += 1
            stats.total_score += room.state.score.of(mark)
            if room.state.winner == mark:
                stats.games_won += 1


# ---------- Matchmaking ----------


@dataclass
class QueueTicket:
    ticket_id: str
    name: str


def estimated_wait(position: int) -> int:
    """Rough wait in seconds shown to someone at ``position`` in the queue."""
    return max(5, position * 10)


class MatchmakingQueue:
    """First-come first-served pairing of players looking for a game."""

    def __init__(self) -> None:
        self._waiting: List[QueueTicket] = []
        self._lock = threading.Lock()

    def join(self, name: str) -> Tuple[QueueTicket, Optional[QueueTicket]]:
        """Enqueue ``name``; returns its ticket and the opponent if one was waiting.

        A matched ticket is never left in the queue.
        """
        ticket = QueueTicket(ticket_id=uuid.uuid4().hex, name=name)
        with self._lock:
            if self._waiting:
                return ticket, self._waiting.pop(0)
            self._waiting.append(ticket)
        return ticket, None

    def leave(self, ticket_id: str) -> bool:
        with self._lock:
            for idx, ticket in enumerate(self._waiting):
                if ticket.ticket_id == ticket_id:
                    del self._waiting[idx]
                    return True
        return False

    def position(self, ticket_id: str) -> Optional[int]:
        with self._lock:
            for idx, ticket in enumerate(self._waiting):
                if ticket.ticket_id == ticket_id:
                    return idx + 1
        return None

    def positions(self) -> List[Tuple[str, int]]:
        with self._lock:
            return [(t.ticket_id, idx + 1) for idx, t in enumerate(self._waiting)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._waiting)
