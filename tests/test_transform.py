"""
Tests for module transformation, including running generated programs
"""
import ast
import textwrap

import pytest

import fake_runtime
from servicegen.config import ServicegenConfig
from servicegen.exceptions import InvalidLogLevelError, TransformError
from servicegen.models import LogLevel
from servicegen.transform import EntryPointTransformer, expand

FAKE = ServicegenConfig(runtime_module="fake_runtime")

SERVICE = '''\
from typing import Annotated

import fake_runtime
from fake_runtime import Postgres, Redis, Service


@fake_runtime.main(log_level="TRACE")
async def app(
    pool: Annotated[Postgres, Postgres(size="{secrets.size}", public=False)],
    *,
    cache: Annotated[Redis, fake_runtime.Redis],
) -> Service:
    return Service(pool, cache=cache)
'''


def _exec(code):
    namespace = {"__name__": "generated_service"}
    exec(compile(code, "generated_service.py", "exec"), namespace)
    return namespace


def test_simple_module_output(simple_service):
    result = EntryPointTransformer().transform_source(simple_service, filename="simple.py")

    assert result.ok
    assert result.code == '''\
import service_runtime


import asyncio

import service_runtime


def main() -> None:
    asyncio.run(service_runtime.start(loader))


async def loader(
    _factory: service_runtime.ProvisionerFactory,
    _resource_tracker: service_runtime.ResourceTracker,
    logger: service_runtime.Logger,
) -> ShuttleAxum:
    log_level = service_runtime.Level.DEBUG
    if log_level < service_runtime.Level.DEBUG:
        log_level = service_runtime.Level.DEBUG

    filter_layer = service_runtime.EnvFilter.from_default_env().add_directive(log_level)
    service_runtime.install_logging(filter_layer, logger)

    return await simple()


async def simple() -> ShuttleAxum:
    return build_router()


if __name__ == "__main__":
    main()
'''


def test_annotations_are_replaced_by_their_base_type(resource_service):
    code = expand(resource_service, filename="app.py")

    assert "Annotated[PgPool" not in code
    assert "    pool: PgPool,\n    redis: Redis,\n) -> ShuttleTide:" in code
    assert "@service_runtime.main" not in code
    assert "from typing import Annotated" in code
    ast.parse(code)


def test_surrounding_code_and_comments_are_preserved():
    source = textwrap.dedent(
        '''\
        """Service module."""
        import service_runtime

        TIMEOUT = 30  # seconds


        @traced
        @service_runtime.main
        async def app(
            # the primary database
            pool: Annotated[PgPool, db.Postgres(
                size="10Gb",
            )],
        ) -> Svc:
            # keep me
            return Svc(pool, timeout=TIMEOUT)


        def helper():
            return 1
        '''
    )

    code = expand(source)

    assert code.startswith('"""Service module."""\nimport service_runtime\n\nTIMEOUT = 30  # seconds\n')
    assert "@traced\nasync def app(\n    # the primary database\n    pool: PgPool,\n) -> Svc:\n    # keep me\n" in code
    assert code.count("def helper():\n    return 1\n") == 1
    assert ".size(strfmt(\"10Gb\", secret_vars))" in code


def test_non_ascii_text_before_annotations_on_the_same_line():
    source = (
        "import service_runtime\n\n\n"
        "@service_runtime.main\n"
        'async def app(a: Annotated[X, P(name="dé")], b: Annotated[Y, Q]) -> Svc:\n'
        "    ...\n"
    )

    code = expand(source)

    assert "async def app(a: X, b: Y) -> Svc:\n" in code
    assert 'P().name(strfmt("dé", secret_vars))' in code


@pytest.mark.parametrize(
    "explicit, config_level, expected",
    [
        ("error", "WARN", LogLevel.ERROR),
        (None, "WARN", LogLevel.INFO),
    ],
)
def test_log_level_precedence_with_decorator(resource_service, explicit, config_level, expected):
    transformer = EntryPointTransformer(ServicegenConfig(log_level=config_level))
    result = transformer.transform_source(resource_service, log_level=explicit)
    assert result.loader.log_level is expected


def test_log_level_falls_back_to_config_then_default(simple_service):
    configured = EntryPointTransformer(ServicegenConfig(log_level="WARN")).transform_source(simple_service)
    default = EntryPointTransformer().transform_source(simple_service)

    assert configured.loader.log_level is LogLevel.WARN
    assert default.loader.log_level is LogLevel.DEBUG


def test_invalid_decorator_log_level_is_fatal():
    source = '@service_runtime.main(log_level="LOUD")\nasync def app() -> Svc:\n    ...\n'
    with pytest.raises(InvalidLogLevelError):
        EntryPointTransformer().transform_source(source)


def test_missing_return_type_produces_no_code():
    source = "@service_runtime.main\nasync def app():\n    ...\n"
    result = EntryPointTransformer().transform_source(source, filename="app.py")

    assert result.code is None
    assert not result.ok
    assert result.diagnostics.codes() == ["missing-return-type"]


def test_missing_entry_point():
    result = EntryPointTransformer().transform_source("def app() -> Svc:\n    ...\n")

    assert result.code is None
    assert result.diagnostics.codes() == ["entry-point-not-found"]
    assert "@service_runtime.main" in result.diagnostics.items[0].hint


def test_duplicate_entry_points():
    source = (
        "@service_runtime.main\nasync def first() -> Svc:\n    ...\n\n\n"
        "@service_runtime.main\nasync def second() -> Svc:\n    ...\n"
    )
    result = EntryPointTransformer().transform_source(source)

    assert result.code is None
    assert result.diagnostics.codes() == ["duplicate-entry-point"]
    assert result.diagnostics.items[0].span.lineno == 6


def test_source_syntax_error():
    result = EntryPointTransformer().transform_source("def broken(:\n", filename="broken.py")

    assert result.code is None
    assert result.diagnostics.codes() == ["source-syntax"]
    assert result.diagnostics.items[0].span.lineno == 1


def test_existing_main_guard_is_not_duplicated(simple_service):
    source = simple_service + '\n\nif __name__ == "__main__":\n    main()\n'
    code = expand(source)
    assert code.count('if __name__ == "__main__":') == 1


def test_main_guard_can_be_disabled(simple_service):
    code = expand(simple_service, config=ServicegenConfig(emit_main_guard=False))
    assert "__main__" not in code
    assert code.endswith("return build_router()\n")


def test_expand_raises_with_diagnostics():
    with pytest.raises(TransformError) as excinfo:
        expand("@service_runtime.main\nasync def app(pool: PgPool) -> Svc:\n    ...\n", filename="app.py")

    assert excinfo.value.diagnostics.codes() == ["missing-resource-annotation"]
    assert "app.py:2:15" in str(excinfo.value)


@pytest.mark.parametrize(
    "parameter",
    [
        "db: Annotated[object, db.Postgres]",
        "fake_runtime: Annotated[object, db.Postgres]",
        "app: Annotated[object, fake_runtime.Redis]",
    ],
    ids=["builder_module_alias", "runtime_module", "entry_point"],
)
def test_parameters_named_like_loader_globals_produce_no_code(parameter):
    source = (
        "from typing import Annotated\n\nimport fake_runtime\nimport fake_runtime as db\n\n\n"
        f"@fake_runtime.main\nasync def app({parameter}) -> fake_runtime.Service:\n    ...\n"
    )
    result = EntryPointTransformer(FAKE).transform_source(source, filename="app.py")

    assert result.code is None
    assert result.diagnostics.codes() == ["reserved-name"]
    assert result.diagnostics.items[0].span.lineno == 8


def test_transform_many_isolates_failures(tmp_path, simple_service):
    good = tmp_path / "good.py"
    good.write_text(simple_service, encoding="utf-8")
    bad = tmp_path / "bad.py"
    bad.write_text('@service_runtime.main(log_level="LOUD")\nasync def app() -> Svc:\n    ...\n', encoding="utf-8")
    missing = tmp_path / "missing.py"

    results = EntryPointTransformer().transform_many([bad, missing, good])

    assert [result.ok for result in results] == [False, False, True]
    assert results[0].diagnostics.codes() == ["invalid-log-level"]
    assert results[1].diagnostics.codes() == ["servicegen-error"]
    assert results[2].filename == str(good)


# Generated programs ----------------------------------------------------


@pytest.mark.integration
@pytest.mark.asyncio
async def test_generated_loader_provisions_in_order():
    namespace = _exec(expand(SERVICE, config=FAKE))
    factory = fake_runtime.ProvisionerFactory({"size": "10Gb"})
    tracker = fake_runtime.ResourceTracker()
    logger = fake_runtime.Logger()

    service = await namespace["loader"](factory, tracker, logger)

    assert isinstance(service, fake_runtime.Service)
    assert tracker.provisioned == ["postgres", "redis"]
    (pool,) = service.resources
    assert pool.calls == [("size", "10Gb"), ("public", False)]
    assert service.named["cache"].calls == []
    assert factory.secret_calls == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_generated_loader_clamps_trace_to_debug():
    namespace = _exec(expand(SERVICE, config=FAKE))
    logger = fake_runtime.Logger()

    await namespace["loader"](fake_runtime.ProvisionerFactory({"size": "1"}), fake_runtime.ResourceTracker(), logger)

    (filter_layer,) = logger.installed
    assert filter_layer.directives == [fake_runtime.Level.DEBUG]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_missing_secret_is_reported_as_provisioning_failure():
    namespace = _exec(expand(SERVICE, config=FAKE))

    with pytest.raises(RuntimeError, match="failed to provision Postgres") as excinfo:
        await namespace["loader"](
            fake_runtime.ProvisionerFactory(),
            fake_runtime.ResourceTracker(),
            fake_runtime.Logger(),
        )

    assert excinfo.value.__cause__.key == "secrets.size"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_provisioning_errors_are_wrapped():
    source = textwrap.dedent(
        """\
        import fake_runtime


        @fake_runtime.main(log_level="INFO")
        def app(broken: Annotated[object, fake_runtime.Broken]) -> fake_runtime.Service:
            return fake_runtime.Service(broken)
        """
    )
    source = "from typing import Annotated\n" + source
    namespace = _exec(expand(source, config=FAKE))

    with pytest.raises(RuntimeError, match="failed to provision fake_runtime.Broken") as excinfo:
        await namespace["loader"](
            fake_runtime.ProvisionerFactory(),
            fake_runtime.ResourceTracker(),
            fake_runtime.Logger(),
        )

    assert isinstance(excinfo.value.__cause__, fake_runtime.ProvisioningFailed)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_aliased_builder_module_with_distinct_parameter_name():
    source = textwrap.dedent(
        """\
        from typing import Annotated

        import fake_runtime
        import fake_runtime as db


        @fake_runtime.main
        async def app(db_pool: Annotated[object, db.Postgres]) -> fake_runtime.Service:
            return fake_runtime.Service(db_pool)
        """
    )
    namespace = _exec(expand(source, config=FAKE))
    tracker = fake_runtime.ResourceTracker()

    service = await namespace["loader"](fake_runtime.ProvisionerFactory(), tracker, fake_runtime.Logger())

    assert tracker.provisioned == ["postgres"]
    assert isinstance(service.resources[0], fake_runtime.Postgres)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_sync_entry_point_is_called_without_await():
    source = textwrap.dedent(
        """\
        import fake_runtime


        @fake_runtime.main
        def app() -> fake_runtime.Service:
            return fake_runtime.Service("ready")
        """
    )
    namespace = _exec(expand(source, config=FAKE))

    service = await namespace["loader"](
        fake_runtime.ProvisionerFactory(),
        fake_runtime.ResourceTracker(),
        fake_runtime.Logger(),
    )

    assert service.resources == ("ready",)


@pytest.mark.integration
def test_main_wrapper_starts_the_loader():
    namespace = _exec(expand(SERVICE, config=FAKE))

    namespace["main"]()

    assert fake_runtime.started[-1] is namespace["loader"]
