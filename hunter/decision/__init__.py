"""Decision engine."""

from .engine import DecisionEngine, decide, new_entry_id

__all__ = ["DecisionEngine", "decide", "new_entry_id"]
