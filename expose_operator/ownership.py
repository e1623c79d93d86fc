"""
Ownership of generated routing resources
Markers identifying generated Ingresses, classification of who owns one,
and the per-strategy index of which service owns which names
"""

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from kubernetes import client


PROVIDER_LABEL_KEY = 'provider'
PROVIDER_LABEL_VALUE = 'fabric8'
GENERATED_BY_KEY = 'fabric8.io/generated-by'
GENERATED_BY_VALUE = 'exposecontroller'

OWNED = 'owned'
AMBIGUOUS = 'ambiguous'
UNMANAGED = 'unmanaged'


@dataclass(frozen=True)
class Ownership:
    """Result of classifying a routing resource"""
    state: str
    service_key: Optional[str] = None

    @classmethod
    def owned(cls, key: str) -> 'Ownership':
        return cls(OWNED, key)

    @classmethod
    def ambiguous(cls) -> 'Ownership':
        return cls(AMBIGUOUS)

    @classmethod
    def unmanaged(cls) -> 'Ownership':
        return cls(UNMANAGED)

    @property
    def should_delete(self) -> bool:
        return self.state == AMBIGUOUS


def is_generated(metadata) -> bool:
    """Both the provider label and the generated-by annotation must be present"""
    if metadata is None:
        return False
    labels = metadata.labels or {}
    annotations = metadata.annotations or {}
    return (
        labels.get(PROVIDER_LABEL_KEY) == PROVIDER_LABEL_VALUE
        and annotations.get(GENERATED_BY_KEY) == GENERATED_BY_VALUE
    )


def classify_ingress(ingress) -> Ownership:
    """
    Decide who owns a routing resource.

    Resources without the generator markers are unmanaged and must never be
    touched. Only owner references of kind Service are considered: exactly
    one makes the resource owned, zero or several make it ambiguous and it
    gets deleted. Owners of other kinds neither add nor remove ownership.
    """
    metadata = ingress.metadata
    if not is_generated(metadata):
        return Ownership.unmanaged()

    owners = [o for o in (metadata.owner_references or []) if o.kind == 'Service']
    if len(owners) != 1:
        return Ownership.ambiguous()

    owner = owners[0]
    if not owner.name:
        return Ownership.ambiguous()

    return Ownership.owned(f"{metadata.namespace}/{owner.name}")


def service_owner_reference(service) -> client.V1OwnerReference:
    return client.V1OwnerReference(
        api_version='v1',
        kind='Service',
        name=service.metadata.name,
        uid=service.metadata.uid or ''
    )


class ExistingIndex:
    """
    Maps "namespace/service" to the ordered routing resource names it owns.

    Not thread safe; a strategy instance is driven by a single loop.
    A key is present only while it maps to at least one name.
    """

    def __init__(self, entries: Optional[Dict[str, List[str]]] = None):
        self._entries: Dict[str, List[str]] = {}
        for key, names in (entries or {}).items():
            for name in names:
                self.add(key, name)

    def names(self, key: str) -> List[str]:
        return list(self._entries.get(key, []))

    def add(self, key: str, name: str) -> None:
        """Idempotent insert"""
        names = self._entries.setdefault(key, [])
        if name not in names:
            names.append(name)

    def append_new(self, key: str, name: str) -> None:
        """Insert a name that must not already be indexed under the key"""
        names = self._entries.setdefault(key, [])
        assert name not in names, f"{name} already indexed for {key}"
        names.append(name)

    def discard(self, key: str, name: str) -> None:
        names = self._entries.get(key)
        if not names:
            return
        if name in names:
            names.remove(name)
        if not names:
            del self._entries[key]

    def pop(self, key: str) -> List[str]:
        return self._entries.pop(key, [])

    def replace(self, other: 'ExistingIndex') -> None:
        self._entries = {key: list(names) for key, names in other._entries.items() if names}

    def items(self) -> Iterator[Tuple[str, List[str]]]:
        for key, names in self._entries.items():
            yield key, list(names)

    def as_dict(self) -> Dict[str, List[str]]:
        return {key: list(names) for key, names in self._entries.items()}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
