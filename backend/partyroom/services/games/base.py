from dataclasses import dataclass
from typing import Optional


@dataclass
class Outcome:
    """Result of applying one player action to a game state."""
    state: dict
    message: str
    game_over: bool = False
    loser_id: Optional[int] = None
    # Index (into the turn-ordered player list) of the next player, None when the round ended
    next_turn_index: Optional[int] = None
