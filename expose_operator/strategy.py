"""
Expose strategy contract and factory
"""

from abc import ABC, abstractmethod

from .exceptions import ConfigurationError


class ExposeStrategy(ABC):
    """
    How exposed services are made reachable from outside the cluster.

    The controller loop calls sync() once per resync, then add() for every
    exposed service and clean() for every service that stopped being
    exposed, and delete() for deleted services. Calls are sequential; an
    instance is not safe for concurrent use.
    """

    @abstractmethod
    def sync(self) -> None:
        """Rebuild in-memory state from the cluster"""

    @abstractmethod
    def has_synced(self) -> bool:
        """Whether every exposed service reached its final state"""

    @abstractmethod
    def add(self, service) -> None:
        """Expose a service, or bring its exposure up to date"""

    @abstractmethod
    def clean(self, service) -> None:
        """Remove the exposure of a service that is no longer exposed"""

    @abstractmethod
    def delete(self, service) -> None:
        """Forget a service that was deleted from the cluster"""


def new_strategy(core_v1, networking_v1, config) -> ExposeStrategy:
    """Create the strategy named by config.exposer"""
    exposer = config.exposer.lower()

    if exposer == 'ingress':
        from .ingress import IngressStrategy
        if not config.domain:
            from .nodeport import discover_node_ip
            node_ip = config.node_ip or discover_node_ip(core_v1)
            config.domain = f"{node_ip}.nip.io"
            print(f"No domain configured, using {config.domain}", flush=True)
        return IngressStrategy(core_v1, networking_v1, config)

    if exposer == 'nodeport':
        from .nodeport import NodePortStrategy
        return NodePortStrategy(core_v1, config)

    raise ConfigurationError(f"unknown exposer {config.exposer!r}")
