from .graph_builder import build_graph
from .interactions import resolve_interaction

__all__ = ["build_graph", "resolve_interaction"]
