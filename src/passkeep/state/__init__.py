# State module - client-side unlock state

from .manager import AppState, StateManager

__all__ = ["AppState", "StateManager"]
