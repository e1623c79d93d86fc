"""Expose operator: publishes Kubernetes Services through Ingresses or node ports."""

__version__ = '0.1.0'
