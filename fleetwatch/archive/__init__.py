from fleetwatch.archive.analyzer import get_delegation_traces, get_session_trace, list_sessions
from fleetwatch.archive.usage import get_usage_report

__all__ = ["get_delegation_traces", "get_session_trace", "get_usage_report", "list_sessions"]
