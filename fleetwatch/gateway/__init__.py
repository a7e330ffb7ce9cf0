from fleetwatch.gateway.link import GatewayLink
from fleetwatch.gateway.requests import RequestTracker

__all__ = ["GatewayLink", "RequestTracker"]
