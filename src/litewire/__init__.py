"""Minimal dependency injection container with scopes.

This package builds object graphs from registered constructors. Constructors
declare their dependencies as typed parameters; the container satisfies them
by type, recursively, when a service is resolved by name.

Exports:
- `Container`: Registry of services, resolved by name or by type.
- `Service`: Registration record returned by `Container.add_service`, configured
  fluently (`set_name`, `set_dispose`, `as_singleton`, `as_transient`, `as_scoped`).
- `Lifetime`: Singleton, transient or scoped.
- `Scope`: Per-unit-of-work view of a container caching scoped services.
- `Context`: Ambient value bound to a scope and handed to disposers.
- `get_typed` / `get_typed_by_name`: Resolve with a checked type.
"""

from ._container import Container, Scope
from ._context import Context
from ._errors import (
    InvalidConstructorError,
    ResolutionError,
    ServiceBuildError,
    ServiceError,
    ServiceNotFoundError,
    ServiceNotRegisteredError,
    ServiceTypeError,
)
from ._provider import ServiceProvider, get_typed, get_typed_by_name
from ._service import Lifetime, Service, type_name


__all__ = [
    "Container",
    "Context",
    "InvalidConstructorError",
    "Lifetime",
    "ResolutionError",
    "Scope",
    "Service",
    "ServiceBuildError",
    "ServiceError",
    "ServiceNotFoundError",
    "ServiceNotRegisteredError",
    "ServiceProvider",
    "ServiceTypeError",
    "get_typed",
    "get_typed_by_name",
    "type_name",
]
