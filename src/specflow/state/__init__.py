from specflow.state.store import ProjectStateStore, StateError

__all__ = ["ProjectStateStore", "StateError"]
