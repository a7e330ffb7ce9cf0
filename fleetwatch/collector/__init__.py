from fleetwatch.collector.broadcaster import AgentUpdate, EventBroadcaster, HostMetricsUpdate, Subscription
from fleetwatch.collector.collector import Collector

__all__ = ["AgentUpdate", "Collector", "EventBroadcaster", "HostMetricsUpdate", "Subscription"]
