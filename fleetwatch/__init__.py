"""FleetWatch: live gateway telemetry and session archive analysis for agent fleets."""

__version__ = "0.1.0"
