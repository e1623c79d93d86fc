"""
Service annotation protocol
Keys a service carries to request exposure, and their typed reading
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import yaml

from .exceptions import AnnotationError, ConfigurationError


EXPOSE_ANNOTATION_KEY = 'fabric8.io/expose'
EXPOSE_ANNOTATION_VALUE = 'true'
# Legacy marker, still honoured when set as a label
EXPOSE_LABEL_KEY = 'expose'
EXPOSE_LABEL_VALUE = 'true'

EXPOSE_URL_KEY = 'fabric8.io/exposeUrl'
EXPOSE_HOST_NAME_AS_KEY = 'fabric8.io/exposeHostNameAs'
EXPOSE_PORT_KEY = 'fabric8.io/exposePort'
INGRESS_NAME_KEY = 'fabric8.io/ingress.name'
HOST_NAME_KEY = 'fabric8.io/host.name'
INGRESS_PATH_KEY = 'fabric8.io/ingress.path'
PATH_MODE_KEY = 'fabric8.io/path.mode'
USE_INTERNAL_DOMAIN_KEY = 'fabric8.io/use.internal.domain'
INGRESS_ANNOTATIONS_KEY = 'fabric8.io/ingress.annotations'

RELEASE_LABEL_KEY = 'release'

PATH_MODE_USE_PATH = 'path'


@dataclass
class ServiceOptions:
    """Exposure options read off a single service"""
    port: Optional[int] = None
    ingress_name: str = ''
    host_name: str = ''
    path: str = ''
    path_mode: Optional[str] = None
    use_internal_domain: bool = False
    expose_host_name_as: str = ''
    release: str = ''
    ingress_annotations: Dict[str, str] = field(default_factory=dict)


def service_key(service) -> str:
    return f"{service.metadata.namespace}/{service.metadata.name}"


def is_exposed(service) -> bool:
    """Check whether a service opted in to exposure"""
    annotations = service.metadata.annotations or {}
    if annotations.get(EXPOSE_ANNOTATION_KEY) == EXPOSE_ANNOTATION_VALUE:
        return True
    labels = service.metadata.labels or {}
    return labels.get(EXPOSE_LABEL_KEY) == EXPOSE_LABEL_VALUE


def _scalar_to_string(value) -> str:
    if value is None:
        return ''
    if isinstance(value, (dict, list)):
        raise ValueError(f"expected a scalar value, got {type(value).__name__}")
    return str(value)


def parse_ingress_annotations(text: str) -> Dict[str, str]:
    """
    Parse an embedded YAML document of extra ingress annotations.
    Comments, quoted scalars and block scalars are supported; every value
    must be a scalar and is kept as written (no YAML 1.1 bool or number
    resolution). Raises ValueError or yaml.YAMLError on bad input.
    """
    document = yaml.load(text, Loader=yaml.BaseLoader)
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValueError(f"expected a mapping, got {type(document).__name__}")

    return {str(key): _scalar_to_string(value) for key, value in document.items()}


def parse_service_options(service) -> ServiceOptions:
    """Read every recognised exposure annotation into ServiceOptions"""
    metadata = service.metadata
    annotations = metadata.annotations or {}
    labels = metadata.labels or {}

    options = ServiceOptions(
        ingress_name=annotations.get(INGRESS_NAME_KEY, ''),
        host_name=annotations.get(HOST_NAME_KEY, ''),
        path=annotations.get(INGRESS_PATH_KEY, ''),
        path_mode=annotations.get(PATH_MODE_KEY) or None,
        use_internal_domain=annotations.get(USE_INTERNAL_DOMAIN_KEY) == 'true',
        expose_host_name_as=annotations.get(EXPOSE_HOST_NAME_AS_KEY, ''),
        release=labels.get(RELEASE_LABEL_KEY, ''),
    )

    port = annotations.get(EXPOSE_PORT_KEY)
    if port:
        try:
            options.port = int(port)
        except ValueError:
            raise ConfigurationError(
                f"service {metadata.namespace}/{metadata.name} has invalid {EXPOSE_PORT_KEY} value {port!r}"
            )

    block = annotations.get(INGRESS_ANNOTATIONS_KEY)
    if block:
        try:
            options.ingress_annotations = parse_ingress_annotations(block)
        except (yaml.YAMLError, ValueError) as e:
            raise AnnotationError(metadata.namespace, metadata.name, e) from e

    return options


def add_service_annotation(annotations: Dict[str, str], url: str) -> None:
    """Publish the exposed URL, also under the key named by exposeHostNameAs if set"""
    annotations[EXPOSE_URL_KEY] = url

    extra_key = annotations.get(EXPOSE_HOST_NAME_AS_KEY)
    if extra_key:
        annotations[extra_key] = url


def remove_service_annotation(annotations: Dict[str, str]) -> bool:
    """Drop the published URL from a service annotation map; return whether anything was removed"""
    if not annotations or EXPOSE_URL_KEY not in annotations:
        return False

    del annotations[EXPOSE_URL_KEY]

    extra_key = annotations.get(EXPOSE_HOST_NAME_AS_KEY)
    if extra_key and extra_key in annotations:
        del annotations[extra_key]
    return True

