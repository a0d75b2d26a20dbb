"""
SAS Field Network Check - Routing Analyzer
Classifies the IPv4 routing table and flags conflicting default gateways.
"""

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import List

from fieldcheck.network_utils import Route
from fieldcheck.store import MeasurementStore

logger = logging.getLogger(__name__)

DEFAULT_ROUTE = "0.0.0.0/0"

# Never considered for anomalies
_EXCLUDED_NETWORKS = (
    ipaddress.IPv4Network("127.0.0.0/8"),
    ipaddress.IPv4Network("224.0.0.0/4"),
    ipaddress.IPv4Network("169.254.0.0/16"),
    ipaddress.IPv4Network("255.255.255.255/32"),
)

_NULL_NEXT_HOPS = ("", "0.0.0.0", "on-link")


@dataclass
class RouteClassification:
    default_routes: List[Route] = field(default_factory=list)
    excluded_routes: List[Route] = field(default_factory=list)
    other_routes: List[Route] = field(default_factory=list)

    @property
    def custom_routes(self) -> List[Route]:
        """Non-default routes that point at a real next hop."""
        return [r for r in self.other_routes if r.next_hop.lower() not in _NULL_NEXT_HOPS]


def _is_excluded(destination: str) -> bool:
    try:
        network = ipaddress.IPv4Network(destination, strict=False)
    except ValueError:
        return False
    return any(network.subnet_of(ex) for ex in _EXCLUDED_NETWORKS)


def classify_routes(routes: List[Route]) -> RouteClassification:
    """Partition routes into default / loopback-multicast / other. Pure."""
    result = RouteClassification()
    for route in routes:
        if route.destination == DEFAULT_ROUTE:
            result.default_routes.append(route)
        elif _is_excluded(route.destination):
            result.excluded_routes.append(route)
        else:
            result.other_routes.append(route)
    return result


class RoutingAnalyzer:

    def __init__(self, store: MeasurementStore, custom_route_limit: int = 10):
        self.store = store
        self.custom_route_limit = custom_route_limit

    def analyze_routes(self, routes: List[Route]) -> RouteClassification:
        result = classify_routes(routes)
        defaults = result.default_routes

        if len(defaults) > 1:
            gateways = ", ".join(f"{r.next_hop} via {r.interface or '?'} (metric {r.metric})"
                                 for r in defaults)
            self.store.warn(f"Multiple default routes found ({len(defaults)}) - possible "
                            f"conflicting gateways: {gateways}")
        elif len(defaults) == 1:
            self.store.success(f"Single default route via {defaults[0].next_hop}")
        else:
            self.store.error("No default route - internet-bound traffic has nowhere to go")

        custom = result.custom_routes
        for route in custom[:self.custom_route_limit]:
            self.store.info(f"Custom/static route: {route.destination} via {route.next_hop}"
                            f"{' on ' + route.interface if route.interface else ''}")
        if len(custom) > self.custom_route_limit:
            self.store.info(f"... {len(custom) - self.custom_route_limit} more custom routes not shown")

        logger.debug(f"Routes: {len(defaults)} default, {len(result.excluded_routes)} excluded, "
                     f"{len(result.other_routes)} other")
        return result
