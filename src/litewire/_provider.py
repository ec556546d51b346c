from __future__ import annotations

import inspect
import typing
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, cast, get_type_hints, runtime_checkable

from ._errors import ServiceTypeError
from ._service import type_name


if TYPE_CHECKING:
    T = TypeVar("T")


@runtime_checkable
class ServiceProvider(Protocol):
    """Anything that resolves services by name: a `Container` or a `Scope`."""

    def get_service(self, name: str) -> Any: ...


def get_typed(provider: ServiceProvider, cls: type[T]) -> T:
    """Resolve the service named after `cls` and check its type.

    The name is derived the same way registration derives it, so a service
    registered under its default name is found with just its type:

      repo = get_typed(scope, Repository)

    Raises:
        ServiceTypeError: the resolved instance isn't a `cls`.

    """
    return get_typed_by_name(provider, cls, type_name(cls))


def get_typed_by_name(provider: ServiceProvider, cls: type[T], name: str) -> T:
    """Resolve `name` from `provider` and check the instance against `cls`."""
    instance = provider.get_service(name)
    if not _conforms(instance, cls):
        raise ServiceTypeError(name, cls, instance)
    return cast("T", instance)


def _conforms(instance: object, cls: Any) -> bool:
    if not inspect.isclass(cls):
        # typing constructs can't be checked at runtime
        return True

    if not _is_protocol(cls):
        return isinstance(instance, cls)

    if _is_runtime_checkable_protocol(cls) and not isinstance(instance, cls):
        return False

    return cls in type(instance).__mro__ or not _structural_mismatches(cls, type(instance))


def _is_protocol(tp: type) -> bool:
    if hasattr(typing, "is_protocol"):
        # https://docs.python.org/3/library/typing.html#typing.is_protocol
        return typing.is_protocol(tp)
    return issubclass(tp, cast("type", Protocol)) and getattr(tp, "_is_protocol", False)


def _is_runtime_checkable_protocol(tp: type) -> bool:
    try:
        isinstance(None, tp)
    except TypeError:
        return False
    else:
        return True


def _structural_mismatches(proto_cls: type, impl: type) -> list[str]:
    """Best-effort structural conformance: member presence and callable arity."""
    mismatches: list[str] = []

    try:
        proto_hints = get_type_hints(proto_cls)
    except (NameError, TypeError):
        proto_hints = {}

    for name in proto_hints:
        if not name.startswith("_") and not hasattr(impl, name):
            mismatches.append(f"missing {name}")

    for name, proto_attr in proto_cls.__dict__.items():
        if name.startswith("_") or not inspect.isfunction(proto_attr):
            continue

        impl_attr = getattr(impl, name, None)
        if impl_attr is None:
            mismatches.append(f"missing {name}")
            continue
        if not callable(impl_attr):
            mismatches.append(f"{name} is not callable")
            continue

        try:
            proto_arity = _positional_arity(inspect.signature(proto_attr))
            impl_arity = _positional_arity(inspect.signature(impl_attr))
        except (TypeError, ValueError):
            continue

        if impl_arity < proto_arity:
            mismatches.append(f"{name} takes {impl_arity} positional params, protocol needs {proto_arity}")

    return mismatches


def _positional_arity(sig: inspect.Signature) -> int:
    return sum(
        1
        for p in sig.parameters.values()
        if p.name != "self"
        and p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
        and p.default is inspect.Parameter.empty
    )
