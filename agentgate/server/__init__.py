"""Gate server: HTTP router, session registry and protocol engine seam."""

from .engine import (
    EngineConnection,
    EngineFactory,
    EngineRequest,
    EngineResponse,
    JsonRpcEngine,
    Resource,
    Tool,
)
from .router import GateServer, create_app
from .sessions import Session, SessionRegistry

__all__ = [
    # Engine seam
    "EngineConnection",
    "EngineFactory",
    "EngineRequest",
    "EngineResponse",
    "JsonRpcEngine",
    "Resource",
    "Tool",
    # Router
    "GateServer",
    "create_app",
    # Sessions
    "Session",
    "SessionRegistry",
]
