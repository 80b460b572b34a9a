"""
Bus Tracker endpoint catalog.

Each endpoint is refreshed on a cadence matching the volatility of its data:
positions and predictions every few seconds, route metadata every few hours.
"""

from dataclasses import dataclass, field
from datetime import timedelta


@dataclass(frozen=True)
class EndpointSpec:
    """Defaults applied to requests for a known endpoint."""

    name: str
    cache_ttl: timedelta
    required_params: frozenset[str] = field(default_factory=frozenset)
    # Parameters whose presence makes a response caller-specific
    uncached_params: frozenset[str] = field(default_factory=frozenset)

    def ttl_for(self, params: dict[str, str]) -> timedelta:
        if any(params.get(name) for name in self.uncached_params):
            return timedelta(0)
        return self.cache_ttl


ENDPOINTS: dict[str, EndpointSpec] = {
    spec.name: spec
    for spec in (
        EndpointSpec("gettime", timedelta(seconds=30)),
        EndpointSpec("getroutes", timedelta(hours=6)),
        EndpointSpec(
            "getdirections",
            timedelta(hours=1),
            required_params=frozenset({"rt"}),
        ),
        EndpointSpec(
            "getstops",
            timedelta(hours=1),
            required_params=frozenset({"rt", "dir"}),
        ),
        EndpointSpec("getpatterns", timedelta(hours=4)),
        EndpointSpec(
            "getpredictions",
            timedelta(seconds=15),
            required_params=frozenset({"stpid"}),
            uncached_params=frozenset({"top", "vid"}),
        ),
        EndpointSpec("getvehicles", timedelta(seconds=15)),
        EndpointSpec("getdetours", timedelta(minutes=2)),
    )
}


def get_endpoint(name: str) -> EndpointSpec | None:
    """Look up catalog defaults for an endpoint name."""
    return ENDPOINTS.get(name)
