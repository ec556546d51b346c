from __future__ import annotations

import inspect
import logging
import sys
import threading
import types
import typing
from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Annotated,
    Any,
    ForwardRef,
    Literal,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from ._context import Context
from ._errors import InvalidConstructorError, ResolutionError, ServiceNotRegisteredError


if sys.version_info >= (3, 14):
    import annotationlib


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable

    # Maps a required parameter type to an instance; raises ResolutionError.
    TypeResolver = Callable[[Any], object]
    DisposeFunc = Callable[[Context, Any], object]

_MISSING: Any = object()
_UNRESOLVED: Any = object()


class Lifetime(Enum):
    SINGLETON = "singleton"
    TRANSIENT = "transient"
    SCOPED = "scoped"


@dataclass(frozen=True)
class Dependency:
    name: str
    kind: inspect._ParameterKind
    annotation: Any
    has_default: bool


@dataclass(frozen=True)
class _Shape:
    produced: Any
    returns_error: bool
    dependencies: tuple[Dependency, ...]


def type_name(tp: Any) -> str:
    """Name a service is registered under when produced as `tp`.

    `module.QualName` for classes (bare qualname for builtins). Optional and
    Annotated wrappers are unwrapped first, so a constructor declared as
    returning `Foo | None` is named after `Foo`.
    """
    tp = _unwrap(tp)
    if isinstance(tp, str):
        return tp
    if inspect.isclass(tp) and not get_args(tp):
        if tp.__module__ == "builtins":
            return tp.__qualname__
        return f"{tp.__module__}.{tp.__qualname__}"
    return repr(tp).removeprefix("typing.")


def _unwrap(tp: Any) -> Any:
    origin = get_origin(tp)
    if origin is Annotated:
        return _unwrap(get_args(tp)[0])
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(tp) if a is not type(None)]
        if len(args) == 1:
            return _unwrap(args[0])
    return tp


def _is_error_type(tp: Any) -> bool:
    tp = _unwrap(tp)
    return inspect.isclass(tp) and issubclass(tp, BaseException)


def _is_none(tp: Any) -> bool:
    return tp is None or tp is type(None)


def _evaluate_string(annotation: str, globalns: dict[str, Any]) -> Any:
    if sys.version_info >= (3, 14):
        return typing.evaluate_forward_ref(ForwardRef(annotation), globals=globalns)
    holder = type("_Hint", (), {"__annotations__": {"value": annotation}})
    return get_type_hints(holder, globalns=globalns)["value"]


def _has_forward_ref(tp: Any) -> bool:
    if isinstance(tp, (str, ForwardRef)):
        return True
    origin = get_origin(tp)
    if origin is Literal:
        return False
    args = get_args(tp)
    if origin is Annotated:
        args = args[:1]
    return any(_has_forward_ref(arg) for arg in args if arg is not Ellipsis)


def _evaluate(annotation: Any, globalns: dict[str, Any]) -> Any:
    """Evaluate one annotation on its own, or return `_UNRESOLVED`."""
    if isinstance(annotation, ForwardRef):
        annotation = annotation.__forward_arg__
    if isinstance(annotation, str):
        try:
            annotation = _evaluate_string(annotation, globalns)
        except (NameError, AttributeError, SyntaxError):
            return _UNRESOLVED
    if _has_forward_ref(annotation):
        return _UNRESOLVED
    return annotation


def _module_globals(obj: Any) -> dict[str, Any]:
    globalns = getattr(inspect.unwrap(obj), "__globals__", None)
    if globalns is not None:
        return globalns
    module = sys.modules.get(getattr(obj, "__module__", None) or type(obj).__module__)
    return vars(module) if module is not None else {}


def _get_type_hints(ctor: Any, sig: inspect.Signature, label: str) -> dict[str, Any]:
    """Evaluated hints for the constructor's parameters and return value.

    When some annotation can't be evaluated (typically a name imported under
    `TYPE_CHECKING`), each one is evaluated on its own; the ones that still
    fail map to `_UNRESOLVED`.
    """
    target = inspect.getattr_static(ctor, "__init__", None) if inspect.isclass(ctor) else ctor

    try:
        return get_type_hints(target)
    except TypeError:
        pass
    except NameError as exc:
        logger.warning("'%s' name error retrieving %s type hints", exc.name, label)

    globalns = _module_globals(target if target is not None else ctor)
    hints = {
        name: _evaluate(p.annotation, globalns)
        for name, p in sig.parameters.items()
        if p.annotation is not p.empty
    }
    if sig.return_annotation is not sig.empty:
        hints["return"] = _evaluate(sig.return_annotation, globalns)
    return hints


def _signature(ctor: Callable[..., Any]) -> inspect.Signature:
    try:
        return inspect.signature(ctor)
    except NameError:
        if sys.version_info < (3, 14):
            raise
        # names only imported for type checkers
        return inspect.signature(ctor, annotation_format=annotationlib.Format.FORWARDREF)
    except (TypeError, ValueError):
        # builtins and some C types carry no signature
        return inspect.Signature()


def _ctor_label(ctor: Any) -> str:
    return getattr(ctor, "__qualname__", None) or getattr(ctor, "__name__", None) or repr(ctor)


def _inspect_constructor(ctor: Any) -> _Shape:  # noqa: C901
    if not callable(ctor):
        msg = f"service: {ctor!r} is not callable"
        raise InvalidConstructorError(msg)

    label = _ctor_label(ctor)
    sig = _signature(ctor)
    hints = _get_type_hints(ctor, sig, label)

    if inspect.isclass(ctor):
        produced: Any = ctor
        returns_error = False
        if _is_error_type(ctor):
            msg = f"service: {label} should return a non-error value"
            raise InvalidConstructorError(msg)
    else:
        ret = hints.get("return", _MISSING)
        if ret is _UNRESOLVED:
            msg = f"service: {label} return annotation {sig.return_annotation!r} can't be evaluated"
            raise InvalidConstructorError(msg)
        produced, returns_error = _inspect_return(label, ret)

    deps = []
    for name, p in sig.parameters.items():
        if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
            continue

        has_default = p.default is not p.empty
        annotation = hints.get(name, p.annotation)
        if annotation is p.empty or annotation is _UNRESOLVED:
            if not has_default:
                if annotation is _UNRESOLVED:
                    msg = f"service: {label} parameter '{name}' annotation {p.annotation!r} can't be evaluated"
                else:
                    msg = f"service: {label} parameter '{name}' needs a type annotation to be injected"
                raise InvalidConstructorError(msg)
            # Only the default can ever satisfy it.
            continue

        deps.append(Dependency(name=name, kind=p.kind, annotation=_unwrap(annotation), has_default=has_default))

    return _Shape(produced=produced, returns_error=returns_error, dependencies=tuple(deps))


def _inspect_return(label: str, ret: Any) -> tuple[Any, bool]:
    if ret is _MISSING or _is_none(ret):
        msg = f"service: {label} should return a value"
        raise InvalidConstructorError(msg)

    if get_origin(ret) is not tuple:
        if _is_error_type(ret):
            msg = f"service: {label} should return a non-error value"
            raise InvalidConstructorError(msg)
        return _unwrap(ret), False

    args = get_args(ret)
    if len(args) == 2 and args[1] is Ellipsis:  # noqa: PLR2004
        # tuple[X, ...] is a single value
        return ret, False

    match len(args):
        case 0:
            msg = f"service: {label} should return a value"
            raise InvalidConstructorError(msg)
        case 1:
            # tuple[X] is a single value: the 1-tuple itself
            return ret, False
        case 2:
            value, err = args
            if _is_error_type(value) or not _is_error_type(err):
                msg = f"service: {label} should return tuple[value, error]"
                raise InvalidConstructorError(msg)
            return _unwrap(value), True
        case _:
            msg = f"service: {label} can not contain more than 2 return values"
            raise InvalidConstructorError(msg)


class Service:
    """Registration record for a single service.

    Holds the constructor, the produced type and name, the lifetime policy
    and, for singletons, the built instance.

    A constructor is a class, or a callable annotated to return either a
    value or `tuple[value, error]`:

      def make_db(settings: Settings) -> Database: ...
      def open_db(settings: Settings) -> tuple[Database, OSError | None]: ...

    Parameters are satisfied by type when the service is built.
    """

    def __init__(self, constructor: Callable[..., Any]) -> None:
        shape = _inspect_constructor(constructor)
        self._constructor = constructor
        self._type = shape.produced
        self._returns_error = shape.returns_error
        self._dependencies = shape.dependencies
        self._name = type_name(shape.produced)
        self._lifetime = Lifetime.TRANSIENT
        self._disposer: DisposeFunc | None = None
        self._lock = threading.Lock()
        self._instance: Any = _MISSING

    @classmethod
    def from_instance(cls, instance: object) -> Service:
        """Create a singleton service already holding `instance`."""

        def provide() -> Any:
            return instance

        provide.__annotations__ = {"return": type(instance)}

        svc = cls(provide).as_singleton()
        svc._instance = instance  # noqa: SLF001
        return svc

    @property
    def name(self) -> str:
        return self._name

    @property
    def type(self) -> Any:
        return self._type

    @property
    def lifetime(self) -> Lifetime:
        return self._lifetime

    @property
    def constructor(self) -> Callable[..., Any]:
        return self._constructor

    @property
    def dependencies(self) -> tuple[Any, ...]:
        return tuple(dep.annotation for dep in self._dependencies)

    @property
    def is_built(self) -> bool:
        return self._instance is not _MISSING

    def set_name(self, name: str) -> Service:
        """Override the lookup name. An empty name keeps the current one.

        The name is only used by name lookups; dependencies are always matched
        by type.
        """
        if name:
            self._name = name
        return self

    def set_dispose(self, func: DisposeFunc | None) -> Service:
        """Set a clean up function, called with `(context, instance)`.

        May be set for any lifetime, however only singletons keep an instance
        to dispose of.
        """
        self._disposer = func
        return self

    def as_singleton(self) -> Service:
        self._lifetime = Lifetime.SINGLETON
        return self

    def as_transient(self) -> Service:
        self._lifetime = Lifetime.TRANSIENT
        return self

    def as_scoped(self) -> Service:
        self._lifetime = Lifetime.SCOPED
        return self

    def build(self, resolve: TypeResolver) -> Any:
        """Build the service, resolving each dependency through `resolve`.

        Singletons that were already built are returned as-is; their
        dependencies are not resolved again. Resolution stops at the first
        dependency that fails, and nothing is cached when the build fails.

        Raises:
            ResolutionError: when a dependency can't be resolved or the
                constructor fails.

        """
        with self._lock:
            if self._lifetime is Lifetime.SINGLETON and self._instance is not _MISSING:
                logger.debug("Returning cached singleton service: %s", self._name)
                return self._instance

            args, kwargs = self._resolve_arguments(resolve)

            logger.debug("Building %s service: %s", self._lifetime.value, self._name)
            instance = self._call(args, kwargs)

            if self._lifetime is Lifetime.SINGLETON:
                self._instance = instance

            return instance

    def _resolve_arguments(self, resolve: TypeResolver) -> tuple[list[Any], dict[str, Any]]:
        args: list[Any] = []
        kwargs: dict[str, Any] = {}
        positional_gap = False

        for dep in self._dependencies:
            positional = dep.kind is inspect.Parameter.POSITIONAL_ONLY
            if positional and positional_gap:
                # an earlier positional-only default was kept; later ones can't be placed
                continue

            try:
                value = resolve(dep.annotation)
            except ServiceNotRegisteredError:
                if not dep.has_default:
                    raise
                logger.debug("Using default for '%s' of %s", dep.name, self._name)
                positional_gap = positional_gap or positional
                continue

            if positional:
                args.append(value)
            else:
                kwargs[dep.name] = value

        return args, kwargs

    def _call(self, args: list[Any], kwargs: dict[str, Any]) -> Any:
        try:
            out = self._constructor(*args, **kwargs)
        except Exception as e:
            msg = f"{type(e).__name__}: {e}"
            raise ResolutionError(msg) from e

        if not self._returns_error:
            return out

        if not isinstance(out, tuple) or len(out) != 2:  # noqa: PLR2004
            msg = f"service: {self._name} constructor should return a (value, error) tuple, got {out!r}"
            raise ResolutionError(msg)

        instance, err = out
        if err is not None:
            msg = f"{type(err).__name__}: {err}"
            raise ResolutionError(msg) from err

        return instance

    def dispose(self, context: Context | None = None) -> None:
        """Call the dispose function with the built instance, then drop it."""
        with self._lock:
            if self._instance is _MISSING:
                return

            instance = self._instance
            self._instance = _MISSING

        if self._disposer is not None:
            logger.debug("Disposing service: %s", self._name)
            self._disposer(context if context is not None else Context.background(), instance)

    def __repr__(self) -> str:
        return f"Service(name={self._name!r}, lifetime={self._lifetime.value})"

