"""
Tests for free-symbol extraction.
"""

import pytest

import sample_functions as sf
from remotefn.core.exceptions import UnanalyzableBody
from remotefn.packaging.symbol_extractor import extract


class TestExtract:
    """Tests for extract()."""

    def test_globals_are_free(self):
        assert extract(sf.g).names == {"h", "sum", "OFFSETS"}

    def test_parameters_and_locals_are_not_free(self):
        def body(a, b=1, *args, c, **kwargs):
            total = a + b + c
            for item in args:
                total += item
            return total, kwargs

        assert extract(body).names == frozenset()

    def test_attribute_names_are_not_symbols(self):
        assert extract(sf.hypotenuse).names == {"math"}

    def test_closure_variables_are_free(self):
        add = sf.make_adder(2)
        assert extract(add).names == {"n"}

    def test_cell_and_global_names_are_separate(self):
        closure = extract(sf.make_adder(2))
        assert closure.cell_names == {"n"}
        assert closure.global_names == frozenset()

        module_level = extract(sf.g)
        assert module_level.cell_names == frozenset()
        assert module_level.global_names == {"h", "sum", "OFFSETS"}

    def test_same_name_as_cell_and_global(self):
        symbols = extract(sf.marker_pair)

        assert symbols.cell_names == {"MARKER"}
        assert symbols.global_names == {"MARKER"}

    def test_nested_lambda_globals_count_for_outer(self):
        assert extract(sf.nested_lambda).names == {"h", "SCALE"}

    def test_comprehension_body_is_analyzed(self):
        assert extract(sf.squares).names == {"h", "range"}

    def test_nested_function_binding_its_own_local(self):
        def outer():
            def inner():
                value = 10
                return value
            return inner()

        assert extract(outer).names == frozenset()

    def test_nested_function_using_outer_local_is_not_free(self):
        def outer(x):
            def inner():
                return x * SCALE_FACTOR  # noqa: F821
            return inner()

        assert extract(outer).names == {"SCALE_FACTOR"}

    def test_class_body_names(self):
        symbols = extract(sf.make_local_class).names
        assert "SCALE" in symbols
        assert "size" not in symbols
        assert "area" not in symbols

    def test_global_statement(self):
        def bump():
            global COUNTER
            COUNTER += 1
            return COUNTER

        assert extract(bump).names == {"COUNTER"}

    def test_imports_inside_body_are_local(self):
        def body():
            import json
            return json.dumps([])

        assert extract(body).names == frozenset()

    def test_rejects_dynamic_scope(self):
        with pytest.raises(UnanalyzableBody) as exc_info:
            extract(sf.uses_eval)
        assert "eval" in exc_info.value.reason

    def test_dynamic_scope_allowed_when_disabled(self):
        assert extract(sf.uses_eval, reject_dynamic_scope=False).names == {"eval"}

    def test_rejects_objects_without_code(self):
        with pytest.raises(UnanalyzableBody):
            extract(len)

    def test_is_pure(self):
        first = extract(sf.f).names
        second = extract(sf.f).names
        assert first == second == {"g"}
