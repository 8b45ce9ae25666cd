from arcade.tests.mocks.mini_game import GameHost, ScriptedMiniGame
from arcade.tests.mocks.remote_store import InMemoryRemoteStore

__all__ = ["GameHost", "InMemoryRemoteStore", "ScriptedMiniGame"]
