"""
End-to-end tests for CodePackager and PackageContainer.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

import remotefn
import sample_functions as sf
from remotefn import (
    CodePackager,
    PackageContainer,
    PackagingConfig,
    PackagingState,
    RejectedBinding,
    UnanalyzableBody,
    UnresolvedSymbol,
    decode,
)


def _exec_function(source, name, **namespace):
    exec(source, namespace)
    return namespace[name]


class TestRoundTrip:
    """Packaged functions behave like the originals after encode and decode."""

    @pytest.mark.parametrize("func, args", [
        (sf.f, (2,)),
        (sf.factorial, (6,)),
        (sf.hypotenuse, (3, 4)),
        (sf.joined, ("a", "b", "c")),
        (sf.weighted_sum, ([1.0, 2.0, 4.0],)),
        (sf.distance_from_origin, (6, 8)),
        (sf.describe_color, ()),
        (sf.scaled, (2,)),
        (sf.squares, (5,)),
        (sf.nested_lambda, (4,)),
        (sf.make_local_class, ()),
        (sf.both_labels, ()),
        (sf.make_adder(7), (1,)),
    ])
    def test_same_result(self, round_trip, func, args):
        assert round_trip(func)(*args) == func(*args)

    def test_keyword_arguments(self, round_trip):
        container = round_trip(sf.scaled)
        assert container(2, factor=5, transform=abs) == sf.scaled(2, factor=5, transform=abs)

    def test_exceptions_propagate(self, round_trip):
        container = round_trip(sf.divide)
        with pytest.raises(ZeroDivisionError):
            container(1, 0)

    def test_lambda(self, round_trip):
        offset = 10
        assert round_trip(lambda x: x + offset)(5) == 15

    def test_package_archive(self, packager):
        data = packager.package_archive(sf.g)
        assert decode(data)(1) == sf.g(1)


class TestClosureCompleteness:
    """Packages need nothing from the scopes they were built from."""

    def test_dependencies_removed_after_packaging(self, round_trip, monkeypatch):
        container = round_trip(sf.f)
        expected = sf.f(4)

        monkeypatch.delattr(sf, "g")
        monkeypatch.delattr(sf, "h")
        monkeypatch.delattr(sf, "OFFSETS")

        assert container(4) == expected

    def test_later_rebinding_is_not_observed(self, packager, monkeypatch):
        container = packager.package(sf.h)
        monkeypatch.setattr(sf, "SCALE", 100)
        assert container(2) == 6

    def test_local_closure_dropped_after_packaging(self, round_trip):
        def make():
            table = {"a": 1, "b": 2}

            def lookup(key):
                return table[key]
            return lookup

        container = round_trip(make())
        del make
        assert container("b") == 2


class TestShadowPreservation:
    """Each dependency sees the bindings of its own defining scope."""

    def test_enclosing_shadows_global(self, round_trip):
        assert round_trip(sf.both_labels)() == ("enclosing", "global")

    def test_nested_global_declaration_bypasses_cell(self, round_trip):
        assert sf.marker_pair() == ("enclosing-marker", "global-marker")
        assert round_trip(sf.marker_pair)() == ("enclosing-marker", "global-marker")

    def test_same_name_in_sibling_namespaces(self, round_trip):
        one = _exec_function("x = 1\ndef one():\n    return x\n", "one")
        two = _exec_function("x = 2\ndef two():\n    return x\n", "two")
        both = _exec_function(
            "def both():\n    return one() + two() * 10\n", "both", one=one, two=two
        )

        assert round_trip(both)() == 21

    def test_global_shadowing_builtin(self, round_trip):
        size = _exec_function(
            "def size(x):\n    return len(x)\n", "size", len=lambda value: -1
        )
        assert round_trip(size)([1, 2, 3]) == -1


class TestCycles:
    """Recursive dependency graphs terminate and stay intact."""

    def test_self_recursion(self, round_trip):
        assert round_trip(sf.factorial)(5) == 120

    def test_mutual_recursion(self, round_trip):
        container = round_trip(sf.is_even)

        assert container(10) is True
        assert container(7) is False

    def test_recursive_closure(self, round_trip):
        def make():
            def countdown(n):
                return [] if n == 0 else [n] + countdown(n - 1)
            return countdown

        assert round_trip(make())(3) == [3, 2, 1]


class TestRejection:
    """Live resources stop packaging and are named in the error."""

    def test_open_file(self, packager, tmp_path):
        with open(tmp_path / "log.txt", "w") as handle:
            def write_line(text):
                handle.write(text + "\n")

            with pytest.raises(RejectedBinding) as exc_info:
                packager.package(write_line)

        assert exc_info.value.symbol == "handle"
        assert exc_info.value.reason == "open stream"
        assert "handle" in str(exc_info.value)

    def test_resource_inside_global(self, packager):
        registry = {"guard": threading.Lock()}
        guarded = _exec_function(
            "def guarded():\n    return registry['guard'].locked()\n",
            "guarded",
            registry=registry,
        )

        with pytest.raises(RejectedBinding) as exc_info:
            packager.package(guarded)
        assert exc_info.value.symbol == "registry"

    def test_unresolved_symbol(self, packager):
        with pytest.raises(UnresolvedSymbol) as exc_info:
            packager.package(sf.uses_missing)
        assert exc_info.value.symbol == "undefined_helper"

    def test_module_unavailable_at_destination(self, packager):
        def module_name():
            return sf.__name__

        with pytest.raises(RejectedBinding) as exc_info:
            packager.package(module_name)

        assert exc_info.value.symbol == "sf"
        assert "not available at the destination" in exc_info.value.reason

    def test_dynamic_scope(self, packager):
        with pytest.raises(UnanalyzableBody):
            packager.package(sf.uses_eval)

    def test_dynamic_scope_allowed(self):
        packager = CodePackager(PackagingConfig(reject_dynamic_scope=False))
        assert packager.package(sf.uses_eval)("1 + 2") == 3

    def test_builtin_root(self, packager):
        with pytest.raises(UnanalyzableBody):
            packager.package(len)


class TestIdempotentInvocation:
    """Calls never observe each other's side effects on captured state."""

    def test_global_mutation(self, packager):
        container = packager.package(sf.append_offset)

        assert container(4) == [1, 2, 3, 4]
        assert container(4) == [1, 2, 3, 4]
        assert sf.OFFSETS == [1, 2, 3]

    def test_nonlocal_mutation(self, packager):
        container = packager.package(sf.increment_twice)

        assert container() == 2
        assert container() == 2

    def test_global_statement(self, packager):
        namespace = {"COUNTER": 0}
        bump = _exec_function(
            "def bump():\n    global COUNTER\n    COUNTER += 1\n    return COUNTER\n",
            "bump",
            **namespace,
        )
        container = packager.package(bump)

        assert container() == 1
        assert container() == 1
        assert bump.__globals__["COUNTER"] == 0

    def test_concurrent_calls(self, packager):
        container = packager.package(sf.increment_twice)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: container(), range(64)))

        assert results == [2] * 64


class TestPackagingState:
    """Tests for the packaging lifecycle."""

    def test_successful_run(self, packager):
        packager.package(sf.f)

        assert packager.state is PackagingState.READY
        assert packager.history[0] is PackagingState.INIT
        assert packager.history[1:4] == [
            PackagingState.EXTRACTING,
            PackagingState.RESOLVING,
            PackagingState.CLASSIFYING,
        ]
        assert packager.history[-2:] == [PackagingState.FLATTENING, PackagingState.READY]
        assert packager.failure is None

    def test_failed_run(self, packager):
        with pytest.raises(UnresolvedSymbol) as exc_info:
            packager.package(sf.uses_missing)

        assert packager.state is PackagingState.FAILED
        assert packager.failure is exc_info.value
        assert PackagingState.FLATTENING not in packager.history

    def test_state_resets_between_runs(self, packager):
        with pytest.raises(UnresolvedSymbol):
            packager.package(sf.uses_missing)

        packager.package(sf.h)
        assert packager.state is PackagingState.READY
        assert PackagingState.FAILED not in packager.history
        assert packager.failure is None

    def test_uses_global_config(self, monkeypatch):
        monkeypatch.setenv("REMOTEFN_REJECT_DYNAMIC_SCOPE", "false")
        packager = CodePackager()

        assert packager.config.reject_dynamic_scope is False
        assert packager.package(sf.uses_eval)("2 * 3") == 6

    def test_logs_progress(self, packager, caplog):
        caplog.set_level(logging.INFO, logger="remotefn")
        packager.package(sf.g)

        assert "Packaging function g" in caplog.text
        assert "Packaged g: 2 functions, 1 frames" in caplog.text


class TestPackageContainer:
    """Tests for the container surface."""

    def test_symbols(self, packager):
        assert packager.package(sf.g).symbols == ("OFFSETS", "h")

    def test_builtins_not_in_symbols(self, packager):
        assert "math" in packager.package(sf.hypotenuse).symbols
        assert "range" not in packager.package(sf.squares).symbols

    def test_identity_attributes(self, packager):
        container = packager.package(sf.make_adder(1))

        assert container.__name__ == "add"
        assert container.__qualname__ == "make_adder.<locals>.add"

    def test_repr(self, packager):
        assert repr(packager.package(sf.g)) == "<PackageContainer g symbols=[OFFSETS, h]>"

    def test_describe(self, packager):
        assert packager.package(sf.g).describe() == {
            "name": "g",
            "qualname": "g",
            "module": "sample_functions",
            "symbols": ["OFFSETS", "h"],
            "frame_count": 1,
            "function_count": 2,
            "value_modules": [],
        }

    def test_materialize_returns_fresh_function(self, packager):
        container = packager.package(sf.g)
        first = container.materialize()

        assert first is not container.materialize()
        assert first(1) == sf.g(1)

    def test_module_level_package(self):
        container = remotefn.package(sf.f)

        assert isinstance(container, PackageContainer)
        assert container(1) == sf.f(1)
