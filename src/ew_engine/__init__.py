"""
Engineering workflow classification and constraint resolution engine.

Public entry point is EngineSession:

    session = EngineSession("my-session")
    result = session.classify("design a composite index for range queries")
    session.append_constraint({...})
    outcome = session.resolve_constraints()
"""

__version__ = "0.1.0"

from ew_engine.session import EngineSession  # noqa: E402

__all__ = ["EngineSession", "__version__"]
