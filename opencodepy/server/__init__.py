from .process import ProcessHandle
from .supervisor import Server, ServerState

__all__ = ["ProcessHandle", "Server", "ServerState"]
