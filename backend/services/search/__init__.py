from .time_window import TimeWindow, compute_window, next_prayer, select_next
from .query_builder import SearchFilter, build_filter, paginate, parse_search_params, search_to_params

__all__ = [
    "TimeWindow", "compute_window", "next_prayer", "select_next",
    "SearchFilter", "build_filter", "paginate", "parse_search_params", "search_to_params",
]
