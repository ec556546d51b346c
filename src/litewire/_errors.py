from __future__ import annotations


class ResolutionError(RuntimeError):
    """Raised while satisfying constructor parameters.

    Recoverable: it travels up through nested builds, each layer adding the
    name of the service that failed, until a public entry point turns it
    into a `ServiceError`.
    """


class ServiceNotRegisteredError(ResolutionError):
    """No service produces the requested type."""

    def __init__(self, service_type: object) -> None:
        self.service_type = service_type
        name = getattr(service_type, "__name__", repr(service_type))
        super().__init__(f"container: failed to resolve {name}")


class ServiceError(RuntimeError):
    """Fatal signal raised by the public lookup methods.

    A missing or broken registration is a programming error; callers are not
    expected to handle it beyond letting it abort the current unit of work.
    """

    def __init__(self, name: str, msg: str) -> None:
        self.name = name
        super().__init__(msg)


class ServiceNotFoundError(ServiceError):
    def __init__(self, name: str) -> None:
        super().__init__(name, f"container: could not find service, {name}")


class ServiceBuildError(ServiceError):
    def __init__(self, name: str, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(name, f"container: failed to build {name}, {cause}")


class ServiceTypeError(ServiceError, TypeError):
    def __init__(self, name: str, expected: object, actual: object) -> None:
        self.expected = expected
        self.actual = actual
        expected_name = getattr(expected, "__name__", repr(expected))
        super().__init__(
            name,
            f"container: service {name} is {type(actual).__name__}, not {expected_name}",
        )


class InvalidConstructorError(TypeError):
    pass
