from __future__ import annotations

from typing import Any


class Context:
    """Immutable ambient value bound to a scope.

    The container never interprets it. Scoped constructors that declare a
    `Context` parameter receive the scope's context, and disposers receive
    the context given to `Container.clean`.

    Example:
      ctx = Context.background().with_value("request_id", "abc")
      scope = container.create_scope(ctx)

    """

    __slots__ = ("_key", "_parent", "_value")

    def __init__(self, parent: Context | None = None, key: Any = None, value: Any = None) -> None:
        self._parent = parent
        self._key = key
        self._value = value

    @classmethod
    def background(cls) -> Context:
        """Return the shared, empty root context."""
        return _BACKGROUND

    @property
    def parent(self) -> Context | None:
        return self._parent

    def with_value(self, key: Any, value: Any) -> Context:
        """Derive a child context carrying `key` -> `value`."""
        if key is None:
            msg = "Context key must not be None"
            raise ValueError(msg)
        return type(self)(self, key, value)

    def value(self, key: Any, default: Any = None) -> Any:
        ctx: Context | None = self
        while ctx is not None:
            if ctx._parent is not None and ctx._key == key:  # noqa: SLF001
                return ctx._value  # noqa: SLF001
            ctx = ctx._parent  # noqa: SLF001
        return default

    def __repr__(self) -> str:
        if self._parent is None:
            return "Context.background()"
        return f"{self._parent!r}.with_value({self._key!r}, {self._value!r})"


_BACKGROUND = Context()
