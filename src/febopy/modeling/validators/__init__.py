from .binding import Binding, SymbolUsage, analyze_symbols, bind_component
from .bounds import check_index_bounds, symbol_extents

__all__ = ["Binding", "SymbolUsage", "analyze_symbols", "bind_component", "check_index_bounds", "symbol_extents"]
