"""
Desired ingress builder
Turns a service, its exposure options and the operator configuration into
the Ingress that should exist and the URL to publish on the service
"""

import re
from dataclasses import dataclass
from typing import Optional

from kubernetes import client

from .annotations import PATH_MODE_USE_PATH, ServiceOptions
from .exceptions import ConfigurationError
from .ownership import (
    GENERATED_BY_KEY,
    GENERATED_BY_VALUE,
    PROVIDER_LABEL_KEY,
    PROVIDER_LABEL_VALUE,
    service_owner_reference,
)


INGRESS_CLASS_KEY = 'kubernetes.io/ingress.class'
NGINX_INGRESS_CLASS_KEY = 'nginx.ingress.kubernetes.io/ingress.class'
TLS_ACME_KEY = 'kubernetes.io/tls-acme'

# Path based routing rewrites paths, which needs an nginx controller
PATH_MODE_DEFAULT_INGRESS_CLASS = 'nginx'
PATH_TYPE = 'ImplementationSpecific'

_NAMED_PLACEHOLDER = re.compile(r'\{\{\s*\.(\w+)\s*\}\}')
_POSITIONAL_PLACEHOLDER = re.compile(r'%(?:\[(\d+)\])?s')


@dataclass
class DesiredIngress:
    ingress: client.V1Ingress
    host_name: str
    path: str
    url: str

    @property
    def name(self) -> str:
        return self.ingress.metadata.name


def expand_url_template(template: str, service: str, namespace: str, domain: str) -> str:
    """
    Expand a host name template.

    Accepts Go template style ``{{.Service}}.{{.Namespace}}.{{.Domain}}`` or
    printf style ``%[1]s.%[2]s.%[3]s`` / ``%s.%s.%s`` (service, namespace,
    domain in that order). Raises ValueError on unknown placeholders.
    """
    if '{{' in template:
        values = {'Service': service, 'Namespace': namespace, 'Domain': domain}

        def named(match):
            key = match.group(1)
            if key not in values:
                raise ValueError(f"unknown placeholder {match.group(0)}")
            return values[key]

        result = _NAMED_PLACEHOLDER.sub(named, template)
        if '{{' in result or '}}' in result:
            raise ValueError("unterminated placeholder")
        return result

    args = (service, namespace, domain)
    position = 0

    def positional(match):
        nonlocal position
        if match.group(1):
            position = int(match.group(1)) - 1
        if not 0 <= position < len(args):
            raise ValueError(f"placeholder {match.group(0)} out of range")
        value = args[position]
        position += 1
        return value

    return _POSITIONAL_PLACEHOLDER.sub(positional, template)


def app_name(service, options: ServiceOptions) -> str:
    """Name the service is known by in host names and default ingress names"""
    if options.ingress_name:
        return options.ingress_name
    name = service.metadata.name
    if options.release and name.startswith(options.release + '-'):
        return name[len(options.release) + 1:]
    return name


def ingress_name(service, options: ServiceOptions, name_prefix: str = '') -> str:
    if options.ingress_name:
        return options.ingress_name
    name = app_name(service, options)
    if name_prefix:
        return f"{name_prefix}-{name}"
    return name


def backend_port(service, options: ServiceOptions) -> int:
    """Port the ingress routes to: the annotated one if declared, else the first"""
    metadata = service.metadata
    ports = (service.spec.ports if service.spec else None) or []
    if not ports:
        raise ConfigurationError(f"service {metadata.namespace}/{metadata.name} has no ports to expose")

    if options.port is None:
        return ports[0].port

    for port in ports:
        if port.port == options.port:
            return port.port

    declared = ', '.join(str(p.port) for p in ports)
    raise ConfigurationError(
        f"service {metadata.namespace}/{metadata.name} has no port {options.port} (declared: {declared})"
    )


def build_ingress(service, options: ServiceOptions, config) -> DesiredIngress:
    """Compute the Ingress and exposed URL for a service. No API calls."""
    namespace = service.metadata.namespace
    service_name = service.metadata.name

    port = backend_port(service, options)
    name = ingress_name(service, options, config.name_prefix)
    app = app_name(service, options)

    domain = config.domain
    if options.use_internal_domain and config.internal_domain:
        domain = config.internal_domain

    path_mode = options.path_mode if options.path_mode is not None else config.path_mode

    if path_mode == PATH_MODE_USE_PATH:
        segment = options.path.strip('/') or app
        host_name = domain
        path = f"/{namespace}/{segment}/"
    else:
        try:
            host_name = expand_url_template(config.url_template, options.host_name or app, namespace, domain)
        except ValueError as e:
            raise ConfigurationError(f"invalid urltemplate {config.url_template!r}: {e}") from e
        path = options.path
        if path and not path.startswith('/'):
            path = '/' + path

    ingress_class = config.ingress_class
    if not ingress_class and path_mode == PATH_MODE_USE_PATH:
        ingress_class = PATH_MODE_DEFAULT_INGRESS_CLASS

    annotations = {}
    if ingress_class:
        annotations[INGRESS_CLASS_KEY] = ingress_class
        annotations[NGINX_INGRESS_CLASS_KEY] = ingress_class
    if config.tls_acme:
        annotations[TLS_ACME_KEY] = 'true'
    annotations.update(options.ingress_annotations)
    annotations[GENERATED_BY_KEY] = GENERATED_BY_VALUE

    tls: Optional[list] = None
    if config.tls_enabled:
        secret_name = config.tls_secret_name or f"tls-{service_name}"
        tls_host = f"*.{domain}" if config.tls_use_wildcard else host_name
        tls = [client.V1IngressTLS(hosts=[tls_host], secret_name=secret_name)]

    scheme = 'https' if config.tls_enabled and not config.http else 'http'
    url = f"{scheme}://{host_name}{path}"

    ingress = client.V1Ingress(
        api_version='networking.k8s.io/v1',
        kind='Ingress',
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels={PROVIDER_LABEL_KEY: PROVIDER_LABEL_VALUE},
            annotations=annotations,
            owner_references=[service_owner_reference(service)]
        ),
        spec=client.V1IngressSpec(
            rules=[
                client.V1IngressRule(
                    host=host_name,
                    http=client.V1HTTPIngressRuleValue(
                        paths=[
                            client.V1HTTPIngressPath(
                                path=path or None,
                                path_type=PATH_TYPE,
                                backend=client.V1IngressBackend(
                                    service=client.V1IngressServiceBackend(
                                        name=service_name,
                                        port=client.V1ServiceBackendPort(number=port)
                                    )
                                )
                            )
                        ]
                    )
                )
            ],
            tls=tls
        )
    )

    return DesiredIngress(ingress=ingress, host_name=host_name, path=path, url=url)
