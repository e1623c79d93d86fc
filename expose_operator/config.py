"""
Operator configuration
Read from a YAML file, with environment variables taking precedence
"""

import os
import sys
from dataclasses import dataclass, fields
from typing import Dict, Optional

import yaml

from .annotations import PATH_MODE_USE_PATH
from .builder import expand_url_template
from .exceptions import ConfigurationError


DEFAULT_CONFIG_PATH = '/etc/exposecontroller/config.yml'
DEFAULT_URL_TEMPLATE = '{{.Service}}.{{.Namespace}}.{{.Domain}}'

KNOWN_EXPOSERS = ('ingress', 'nodeport')


@dataclass
class ExposeConfig:
    exposer: str = 'ingress'
    namespace: str = ''
    domain: str = ''
    internal_domain: str = ''
    url_template: str = DEFAULT_URL_TEMPLATE
    name_prefix: str = ''
    ingress_class: str = ''
    tls_acme: bool = False
    tls_secret_name: str = ''
    tls_use_wildcard: bool = False
    path_mode: str = ''
    node_ip: str = ''
    http: bool = False
    resync_seconds: int = 300

    @property
    def tls_enabled(self) -> bool:
        return self.tls_acme or bool(self.tls_secret_name)

    def validate(self):
        """Reject settings that would fail on every service"""
        if self.exposer.lower() not in KNOWN_EXPOSERS:
            raise ConfigurationError(f"unknown exposer {self.exposer!r}, expected one of {', '.join(KNOWN_EXPOSERS)}")

        if self.path_mode not in ('', PATH_MODE_USE_PATH):
            raise ConfigurationError(f"unknown path-mode {self.path_mode!r}")

        try:
            expand_url_template(self.url_template, 'service', 'namespace', 'domain')
        except ValueError as e:
            raise ConfigurationError(f"invalid urltemplate {self.url_template!r}: {e}") from e

        if self.resync_seconds <= 0:
            raise ConfigurationError(f"resync-seconds must be positive, got {self.resync_seconds}")


# Key in the YAML file -> ExposeConfig field
FILE_KEYS: Dict[str, str] = {
    'exposer': 'exposer',
    'namespace': 'namespace',
    'domain': 'domain',
    'internal-domain': 'internal_domain',
    'urltemplate': 'url_template',
    'name-prefix': 'name_prefix',
    'ingress-class': 'ingress_class',
    'tls-acme': 'tls_acme',
    'tls-secret-name': 'tls_secret_name',
    'tls-use-wildcard': 'tls_use_wildcard',
    'path-mode': 'path_mode',
    'node-ip': 'node_ip',
    'http': 'http',
    'resync-seconds': 'resync_seconds',
}

ENV_KEYS: Dict[str, str] = {
    'EXPOSE_EXPOSER': 'exposer',
    'EXPOSE_NAMESPACE': 'namespace',
    'EXPOSE_DOMAIN': 'domain',
    'EXPOSE_INTERNAL_DOMAIN': 'internal_domain',
    'EXPOSE_URL_TEMPLATE': 'url_template',
    'EXPOSE_NAME_PREFIX': 'name_prefix',
    'EXPOSE_INGRESS_CLASS': 'ingress_class',
    'EXPOSE_TLS_ACME': 'tls_acme',
    'EXPOSE_TLS_SECRET_NAME': 'tls_secret_name',
    'EXPOSE_TLS_USE_WILDCARD': 'tls_use_wildcard',
    'EXPOSE_PATH_MODE': 'path_mode',
    'EXPOSE_NODE_IP': 'node_ip',
    'EXPOSE_HTTP': 'http',
    'EXPOSE_RESYNC_SECONDS': 'resync_seconds',
}

_FIELD_TYPES = {f.name: f.type for f in fields(ExposeConfig)}


def _coerce(field_name: str, value):
    kind = _FIELD_TYPES[field_name]
    if kind is bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ('true', '1', 'yes', 'on')
    if kind is int:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"{field_name} must be an integer, got {value!r}")
    return '' if value is None else str(value)


def load_config(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> ExposeConfig:
    """Load the operator configuration and validate it"""
    if environ is None:
        environ = os.environ
    if path is None:
        path = environ.get('EXPOSE_CONFIG', DEFAULT_CONFIG_PATH)

    values = {}

    if os.path.exists(path):
        try:
            with open(path, 'r') as f:
                document = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"failed to parse config file {path}: {e}") from e

        if not isinstance(document, dict):
            raise ConfigurationError(f"config file {path} must contain a mapping")

        for key, value in document.items():
            field_name = FILE_KEYS.get(key)
            if field_name is None:
                print(f"WARNING: Ignoring unknown config key {key!r} in {path}", file=sys.stderr, flush=True)
                continue
            values[field_name] = _coerce(field_name, value)
        print(f"Loaded configuration from {path}", flush=True)
    else:
        print(f"Config file {path} not found, using defaults", flush=True)

    for env_name, field_name in ENV_KEYS.items():
        value = environ.get(env_name)
        if value is not None:
            values[field_name] = _coerce(field_name, value)

    expose_config = ExposeConfig(**values)
    expose_config.validate()
    return expose_config
