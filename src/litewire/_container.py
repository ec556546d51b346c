from __future__ import annotations

import inspect
import logging
import threading
from typing import TYPE_CHECKING, Any

from ._context import Context
from ._errors import (
    ResolutionError,
    ServiceBuildError,
    ServiceNotFoundError,
    ServiceNotRegisteredError,
)
from ._rwlock import RWLock
from ._service import Lifetime, Service


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


class Container:
    """Registry of services, resolved by name or by type.

    - register constructors, configure each returned `Service` fluently
    - resolve with constructor injection, matching parameters by type
    - lifetimes: singleton / transient / scoped
    - scopes for per-request instances.

    Example:
      container = Container()
      container.add_service(make_settings).as_singleton()
      container.add_service(make_repo).set_name("repo")
      repo = container.get_service("repo")

    Registration order is kept: name lookups return the first match and
    `get_services` returns matches in the order they were added.
    """

    def __init__(self) -> None:
        self._services: list[Service] = []
        self._lock = RWLock()

    def add_service(self, constructor: Callable[..., Any]) -> Service:
        """Register a constructor and return its `Service` for configuration.

        Raises:
            InvalidConstructorError: if the constructor's signature can't
                produce a service.

        """
        svc = Service(constructor)
        with self._lock.write_lock():
            self._services.append(svc)

        logger.debug("Registered service: %s", svc.name)
        return svc

    def add_instance(self, instance: object, name: str | None = None) -> Service:
        """Register a pre-built instance (always singleton)."""
        svc = Service.from_instance(instance).set_name(name or "")
        with self._lock.write_lock():
            self._services.append(svc)

        logger.debug("Registered instance: %s", svc.name)
        return svc

    def get_service(self, name: str) -> Any:
        """Resolve a service by name.

        Meant for services the caller can't do without, so it raises instead
        of returning an error value.

        Raises:
            ServiceNotFoundError: no service is registered under `name`.
            ServiceBuildError: the service or one of its dependencies
                failed to build.

        """
        with self._lock.read_lock():
            svc = self._find_by_name(name)
            if svc is None:
                raise ServiceNotFoundError(name)

            try:
                return svc.build(self.get_service_by_type)
            except ResolutionError as e:
                raise ServiceBuildError(svc.name, e) from e

    def get_service_by_type(self, service_type: Any) -> Any:
        """Resolve the first service producing `service_type`.

        Used to satisfy constructor parameters. Failures stay recoverable and
        name the service that failed, so nested failures read as a chain.

        Raises:
            ServiceNotRegisteredError: nothing produces `service_type`.
            ResolutionError: the matching service failed to build.

        """
        with self._lock.read_lock():
            svc = self._find_by_type(service_type)
            if svc is None:
                raise ServiceNotRegisteredError(service_type)

            try:
                return svc.build(self.get_service_by_type)
            except ResolutionError as e:
                msg = f"container: failed to build {svc.name}, {e}"
                raise ResolutionError(msg) from e

    def get_services(self, service_type: Any) -> list[Any]:
        """Build every service producing `service_type`, in registration order.

        Returns an empty list when nothing matches.
        """
        with self._lock.read_lock():
            instances = []
            for svc in self._services:
                if svc.type != service_type:
                    continue

                try:
                    instances.append(svc.build(self.get_service_by_type))
                except ResolutionError as e:
                    raise ServiceBuildError(svc.name, e) from e

            return instances

    def get_service_info(self, name: str) -> Service:
        """Return the registered `Service` for `name` without building it."""
        with self._lock.read_lock():
            svc = self._find_by_name(name)

        if svc is None:
            raise ServiceNotFoundError(name)
        return svc

    def find_service_info(self, service_type: Any) -> Service | None:
        """Return the first `Service` producing `service_type`, if any."""
        with self._lock.read_lock():
            return self._find_by_type(service_type)

    def has_service(self, name: str) -> bool:
        with self._lock.read_lock():
            return self._find_by_name(name) is not None

    def clean(self, context: Context | None = None) -> None:
        """Dispose of every built singleton, in registration order.

        The container remains usable afterwards; singletons are rebuilt on
        their next resolution. Intended to be called when the program ends.
        """
        ctx = context if context is not None else Context.background()
        with self._lock.write_lock():
            for svc in self._services:
                svc.dispose(ctx)

        logger.debug("Container cleaned")

    def create_scope(self, context: Context | None = None) -> Scope:
        """Create a scope bound to this container and `context`."""
        ctx = context if context is not None else Context.background()
        return Scope(self, ctx, _from_parent=True)

    def __len__(self) -> int:
        with self._lock.read_lock():
            return len(self._services)

    def __iter__(self) -> Iterator[Service]:
        with self._lock.read_lock():
            snapshot = list(self._services)
        return iter(snapshot)

    def _find_by_name(self, name: str) -> Service | None:
        for svc in self._services:
            if svc.name == name:
                return svc
        return None

    def _find_by_type(self, service_type: Any) -> Service | None:
        for svc in self._services:
            if svc.type == service_type:
                return svc
        return None


class Scope:
    """Per-unit-of-work view of a container.

    Scoped services are built at most once per scope and cached here by
    type; singleton and transient services are resolved by the container
    unchanged. Constructors of scoped services may declare a `Context`
    parameter to receive the scope's context.
    """

    def __init__(self, container: Container, context: Context, *, _from_parent: bool = False) -> None:
        if not _from_parent:
            msg = "Scope instances must be created via Container.create_scope()"
            raise RuntimeError(msg)
        self._container = container
        self._context = context
        self._instances: dict[Any, Any] = {}
        self._lock = threading.RLock()

    @property
    def container(self) -> Container:
        return self._container

    @property
    def context(self) -> Context:
        return self._context

    def get_service(self, name: str) -> Any:
        """Resolve a service by name, caching scoped services in this scope.

        Raises:
            ServiceNotFoundError: no service is registered under `name`.
            ServiceBuildError: the service or one of its dependencies
                failed to build.

        """
        svc = self._container.get_service_info(name)
        if svc.lifetime is not Lifetime.SCOPED:
            return self._container.get_service(name)

        with self._lock:
            try:
                return self._get_scoped(svc)
            except ResolutionError as e:
                raise ServiceBuildError(svc.name, e) from e

    def _get_scoped(self, svc: Service) -> Any:
        if svc.type in self._instances:
            logger.debug("Returning scoped service: %s", svc.name)
            return self._instances[svc.type]

        instance = svc.build(self._resolve)
        self._instances[svc.type] = instance
        return instance

    def _resolve(self, service_type: Any) -> Any:
        if (
            inspect.isclass(service_type)
            and issubclass(service_type, Context)
            and isinstance(self._context, service_type)
        ):
            return self._context

        if service_type in self._instances:
            return self._instances[service_type]

        svc = self._container.find_service_info(service_type)
        if svc is not None and svc.lifetime is Lifetime.SCOPED:
            try:
                return self._get_scoped(svc)
            except ResolutionError as e:
                msg = f"container: failed to build {svc.name}, {e}"
                raise ResolutionError(msg) from e

        return self._container.get_service_by_type(service_type)
