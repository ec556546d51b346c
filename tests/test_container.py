import threading
import unittest
from unittest.mock import MagicMock

import pytest

from litewire import (
    Container,
    Context,
    ResolutionError,
    ServiceBuildError,
    ServiceError,
    ServiceNotFoundError,
    ServiceNotRegisteredError,
    type_name,
)


class Settings:
    def __init__(self, dsn: str = "sqlite://"):
        self.dsn = dsn


class Database:
    def __init__(self, settings: Settings):
        self.settings = settings


class Repository:
    def __init__(self, db: Database):
        self.db = db


class Plugin:
    def __init__(self, label: str):
        self.label = label


class TestContainerGetService(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_get_service_by_default_name(self):
        self.cont.add_service(Settings)

        settings = self.cont.get_service(type_name(Settings))

        assert isinstance(settings, Settings)

    def test_get_service_by_custom_name(self):
        self.cont.add_service(Settings).set_name("settings")

        assert isinstance(self.cont.get_service("settings"), Settings)

    def test_get_service_wires_dependencies_recursively(self):
        self.cont.add_service(Settings)
        self.cont.add_service(Database)
        self.cont.add_service(Repository).set_name("repo")

        repo = self.cont.get_service("repo")

        assert isinstance(repo, Repository)
        assert isinstance(repo.db, Database)
        assert isinstance(repo.db.settings, Settings)

    def test_get_service_returns_first_registration_for_duplicate_names(self):
        def first() -> Plugin:
            return Plugin("first")

        def second() -> Plugin:
            return Plugin("second")

        self.cont.add_service(first).set_name("plugin")
        self.cont.add_service(second).set_name("plugin")

        assert self.cont.get_service("plugin").label == "first"

    def test_get_service_unknown_name_raises(self):
        with pytest.raises(ServiceNotFoundError) as ctx:
            self.cont.get_service("unknown")

        assert ctx.value.name == "unknown"
        assert "could not find service, unknown" in str(ctx.value)

    def test_get_service_build_failure_raises(self):
        def open_db(settings: Settings) -> tuple[Database, ConnectionError | None]:
            return None, ConnectionError("refused")

        self.cont.add_service(Settings)
        self.cont.add_service(open_db).set_name("db")

        with pytest.raises(ServiceBuildError) as ctx:
            self.cont.get_service("db")

        assert "failed to build db" in str(ctx.value)
        assert "refused" in str(ctx.value)
        assert isinstance(ctx.value.__cause__, ResolutionError)

    def test_get_service_missing_dependency_names_missing_type(self):
        self.cont.add_service(Repository).set_name("repo")

        with pytest.raises(ServiceBuildError, match="failed to resolve Database"):
            self.cont.get_service("repo")

    def test_get_service_nested_failure_names_each_service(self):
        self.cont.add_service(Database).set_name("db")
        self.cont.add_service(Repository).set_name("repo")

        with pytest.raises(ServiceBuildError) as ctx:
            self.cont.get_service("repo")

        msg = str(ctx.value)
        assert "failed to build repo" in msg
        assert "failed to build db" in msg
        assert "failed to resolve Settings" in msg

    def test_service_errors_are_runtime_errors(self):
        with pytest.raises(RuntimeError):
            self.cont.get_service("unknown")

        with pytest.raises(ServiceError):
            self.cont.get_service("unknown")

    def test_parameter_default_used_when_type_not_registered(self):
        class Server:
            def __init__(self, settings: Settings, port: int = 8080):
                self.settings = settings
                self.port = port

        self.cont.add_service(Settings)
        self.cont.add_service(Server).set_name("server")

        assert self.cont.get_service("server").port == 8080


class TestContainerGetServiceByType(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_get_service_by_type_returns_first_match(self):
        self.cont.add_service(Settings)

        assert isinstance(self.cont.get_service_by_type(Settings), Settings)

    def test_get_service_by_type_missing_is_recoverable(self):
        with pytest.raises(ServiceNotRegisteredError) as ctx:
            self.cont.get_service_by_type(Settings)

        assert ctx.value.service_type is Settings
        assert not isinstance(ctx.value, ServiceError)

    def test_get_service_by_type_build_failure_is_recoverable(self):
        self.cont.add_service(Database).set_name("db")

        with pytest.raises(ResolutionError, match="failed to build db") as ctx:
            self.cont.get_service_by_type(Database)

        assert not isinstance(ctx.value, ServiceNotRegisteredError)


class TestContainerGetServices(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_get_services_returns_all_matches_in_registration_order(self):
        def alpha() -> Plugin:
            return Plugin("alpha")

        def beta() -> Plugin:
            return Plugin("beta")

        def gamma() -> Plugin:
            return Plugin("gamma")

        self.cont.add_service(alpha)
        self.cont.add_service(Settings)
        self.cont.add_service(beta).as_singleton()
        self.cont.add_service(gamma)

        plugins = self.cont.get_services(Plugin)

        assert [p.label for p in plugins] == ["alpha", "beta", "gamma"]
        assert self.cont.get_services(Plugin)[1] is plugins[1]
        assert self.cont.get_services(Plugin)[0] is not plugins[0]

    def test_get_services_no_match_returns_empty_list(self):
        assert self.cont.get_services(Plugin) == []

    def test_get_services_build_failure_raises(self):
        def broken() -> tuple[Plugin, ValueError | None]:
            return None, ValueError("broken plugin")

        def working() -> Plugin:
            return Plugin("working")

        self.cont.add_service(working)
        self.cont.add_service(broken)

        with pytest.raises(ServiceBuildError, match="broken plugin"):
            self.cont.get_services(Plugin)


class TestContainerClean(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_clean_disposes_singletons_once(self):
        disposer = MagicMock()
        self.cont.add_service(Settings).set_name("settings").as_singleton().set_dispose(disposer)
        settings = self.cont.get_service("settings")

        self.cont.clean()
        self.cont.clean()

        disposer.assert_called_once_with(Context.background(), settings)

    def test_clean_passes_context_to_disposers(self):
        disposer = MagicMock()
        self.cont.add_service(Settings).set_name("settings").as_singleton().set_dispose(disposer)
        self.cont.get_service("settings")
        ctx = Context.background().with_value("deadline", 5)

        self.cont.clean(ctx)

        assert disposer.call_args[0][0] is ctx

    def test_clean_disposes_in_registration_order(self):
        disposed = []
        self.cont.add_service(Settings).as_singleton().set_dispose(lambda ctx, i: disposed.append("settings"))
        self.cont.add_service(Database).as_singleton().set_dispose(lambda ctx, i: disposed.append("db"))
        self.cont.get_service_by_type(Database)

        self.cont.clean()

        assert disposed == ["settings", "db"]

    def test_clean_skips_services_never_built(self):
        disposer = MagicMock()
        self.cont.add_service(Settings).as_singleton().set_dispose(disposer)

        self.cont.clean()

        disposer.assert_not_called()

    def test_container_rebuilds_singleton_after_clean(self):
        self.cont.add_service(Settings).set_name("settings").as_singleton()
        before = self.cont.get_service("settings")

        self.cont.clean()
        after = self.cont.get_service("settings")

        assert isinstance(after, Settings)
        assert after is not before
        assert self.cont.get_service("settings") is after


class TestContainerRegistry(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_add_instance_is_always_singleton(self):
        settings = Settings("postgres://")
        self.cont.add_instance(settings, name="settings")
        self.cont.add_service(Database).set_name("db")

        assert self.cont.get_service("settings") is settings
        assert self.cont.get_service("db").settings is settings

    def test_add_instance_without_name_uses_type_name(self):
        settings = Settings("postgres://")
        svc = self.cont.add_instance(settings)
        other = self.cont.add_instance(Settings("sqlite://"), name=None)

        assert svc.name == type_name(Settings)
        assert other.name == type_name(Settings)
        assert self.cont.get_service(type_name(Settings)) is settings

    def test_get_service_info_returns_service_without_building(self):
        constructor = MagicMock()

        def make_settings() -> Settings:
            constructor()
            return Settings()

        svc = self.cont.add_service(make_settings).set_name("settings")

        assert self.cont.get_service_info("settings") is svc
        constructor.assert_not_called()

    def test_get_service_info_unknown_name_raises(self):
        with pytest.raises(ServiceNotFoundError):
            self.cont.get_service_info("unknown")

    def test_has_service_len_and_iter(self):
        settings = self.cont.add_service(Settings).set_name("settings")
        db = self.cont.add_service(Database)

        assert self.cont.has_service("settings")
        assert not self.cont.has_service("db")
        assert len(self.cont) == 2
        assert list(self.cont) == [settings, db]


def test_singleton_and_transient_dependency_wiring():
    c = Container()

    class A: ...

    class B:
        def __init__(self, a: A):
            self.a = a

    def make_a() -> A:
        return A()

    def make_b(a: A) -> tuple[B, Exception | None]:
        return B(a), None

    c.add_service(make_a).set_name("Svc").as_singleton()
    c.add_service(make_b).set_name("B")

    b1 = c.get_service("B")
    b2 = c.get_service("B")

    assert b1 is not b2
    assert b1.a is b2.a
    assert c.get_service("Svc") is b1.a


def test_concurrent_singleton_resolution_builds_once():
    c = Container()
    calls = []
    barrier = threading.Barrier(8)

    def make_settings() -> Settings:
        calls.append(1)
        return Settings()

    c.add_service(make_settings).set_name("settings").as_singleton()
    results = []

    def worker():
        barrier.wait()
        results.append(c.get_service("settings"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(calls) == 1
    assert len(results) == 8
    assert all(r is results[0] for r in results)


def test_registration_while_resolving_from_other_threads():
    c = Container()
    c.add_service(Settings).set_name("settings")
    errors = []

    def reader():
        for _ in range(200):
            try:
                c.get_service("settings")
            except ServiceError as e:
                errors.append(e)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for t in readers:
        t.start()

    for i in range(50):

        def make_plugin(label: str = f"p{i}") -> Plugin:
            return Plugin(label)

        c.add_service(make_plugin)

    for t in readers:
        t.join()

    assert errors == []
    assert len(c.get_services(Plugin)) == 50
