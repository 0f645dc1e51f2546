"""Tests for YAML form definitions, the case runner and the CLI."""

import json

import pytest

from formcalc import DefinitionError, load_definition, load_settings, parse_definition, run_cases
from formcalc.cli import main
from formcalc.runner import values_match

INVOICE = """
settings:
  staleness_window: 0
arrays:
  products: [quantity, unitPrice]
fields:
  - id: subtotal
    expression: price * 2
    dependencies: [price]
  - id: total
    expression: subtotal + tax
    dependencies: [subtotal, tax]
  - id: products[0].lineTotal
    expression: quantity * unitPrice
  - id: grandTotal
    expression: sumLineTotal(products)
    dependencies: [products]
  - id: ratio
    expression: price / tax
    default: 0
templates:
  summary: "Total: {{total}}"
  lines: "{{products.length}} line(s), {{grandTotal}}"
values:
  price: 10
  tax: 5
  products:
    - {quantity: 2, unitPrice: 10}
cases:
  - name: defaults
    expect:
      subtotal: 20
      total: 25
      grandTotal: 20
    templates:
      summary: "Total: 25"
      lines: "1 line(s), 20"
  - name: more tax
    inputs: {tax: 7}
    expect:
      total: 27
      ratio: 1.4285714285714286
"""


@pytest.fixture
def invoice_file(tmp_path):
    path = tmp_path / "invoice.yaml"
    path.write_text(INVOICE)
    return path


class TestParseDefinition:
    def test_full_definition(self, invoice_file):
        definition = load_definition(invoice_file)
        assert definition.path == str(invoice_file)
        assert definition.settings.staleness_window == 0
        assert [f.id for f in definition.fields][:2] == ["subtotal", "total"]
        assert definition.fields[2].dependencies is None
        assert definition.fields[4].default == 0
        assert len(definition.cases) == 2

    def test_fields_mapping_form(self):
        definition = parse_definition(
            """
fields:
  subtotal: price * 2
  name:
  total:
    expression: subtotal + tax
    dependencies: [subtotal, tax]
"""
        )
        assert [f.id for f in definition.fields] == ["subtotal", "name", "total"]
        assert definition.fields[0].expression == "price * 2"
        assert definition.fields[1].expression is None
        assert definition.fields[2].dependencies == ["subtotal", "tax"]

    def test_empty_document(self):
        definition = parse_definition("")
        assert definition.fields == []

    def test_build_session(self, invoice_file):
        definition = load_definition(invoice_file)
        with definition.build_session() as session:
            results = session.evaluate_all(definition.values)
            assert results["total"] == 25
            assert results["products[0].lineTotal"] == 20
            assert results["grandTotal"] == 20

    @pytest.mark.parametrize(
        "source",
        [
            "fields: [",
            "- just\n- a list\n",
            "bogus: 1\n",
            "fields:\n  - expression: a + b\n",
            "settings:\n  staleness_window: -1\n",
        ],
    )
    def test_invalid(self, source):
        with pytest.raises(DefinitionError):
            parse_definition(source, "bad.yaml")

    def test_missing_file(self, tmp_path):
        with pytest.raises(DefinitionError):
            load_definition(tmp_path / "nope.yaml")


class TestLoadSettings:
    def test_plain_settings_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("empty_placeholder: n/a\ntemplate_functions: false\n")
        settings = load_settings(path)
        assert settings.empty_placeholder == "n/a"
        assert settings.template_functions is False
        assert settings.staleness_window == 0.1

    def test_settings_section_of_definition(self, invoice_file):
        assert load_settings(invoice_file).staleness_window == 0

    def test_unknown_setting(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("staleness: 3\n")
        with pytest.raises(DefinitionError):
            load_settings(path)


class TestRunner:
    def test_values_match(self):
        assert values_match(0.1 + 0.2, 0.3)
        assert values_match(20, 20.0)
        assert not values_match(1, True)
        assert values_match("a", "a")
        assert values_match(None, None)

    def test_all_cases_pass(self, invoice_file):
        report = run_cases(load_definition(invoice_file))
        assert report.failed == 0, [r for r in report.results if not r.passed]
        assert report.total == 7

    def test_failures_reported(self):
        definition = parse_definition(
            """
fields:
  - id: double
    expression: x * 2
  - id: broken
    expression: x / 0
cases:
  - name: wrong
    inputs: {x: 2}
    expect: {double: 5, broken: 1}
    templates: {missing: "?"}
"""
        )
        report = run_cases(definition)
        assert report.total == 3
        assert report.passed == 0
        broken = next(r for r in report.results if r.target == "broken")
        assert "division by zero" in broken.error
        missing = next(r for r in report.results if r.target == "template:missing")
        assert missing.error == "no such template"


class TestCLI:
    def test_eval(self, invoice_file, capsys):
        assert main(["eval", str(invoice_file)]) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["values"]["total"] == 25
        assert output["templates"]["summary"] == "Total: 25"
        assert output["errors"] == {}
        assert output["stats"]["circular_dependency_ids"] == []

    def test_eval_with_overrides(self, invoice_file, capsys):
        assert main(["eval", str(invoice_file), "--values", '{"price": 12}']) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["values"]["subtotal"] == 24

    def test_eval_bad_values(self, invoice_file):
        assert main(["eval", str(invoice_file), "--values", "{nope"]) == 2
        assert main(["eval", str(invoice_file), "--values", "[1]"]) == 2

    def test_eval_strict(self, invoice_file, capsys):
        assert main(["eval", str(invoice_file), "--values", '{"tax": 0}']) == 0
        assert main(["eval", str(invoice_file), "--strict", "--values", '{"tax": 0}']) == 1

    def test_validate(self, capsys):
        assert main(["validate", "price * 2", "subtotal + tax"]) == 0
        out = capsys.readouterr().out
        assert "OK    price * 2  (reads: price)" in out

        assert main(["validate", "price *", "Math.round(x)"]) == 1
        out = capsys.readouterr().out
        assert out.count("FAIL") == 2

    def test_test_command(self, invoice_file, capsys):
        assert main(["test", str(invoice_file)]) == 0
        assert "7/7 expectations passed" in capsys.readouterr().out

    def test_test_command_failure(self, tmp_path, capsys):
        path = tmp_path / "form.yaml"
        path.write_text("fields: {a: x + 1}\ncases:\n  - name: c\n    inputs: {x: 1}\n    expect: {a: 3}\n")
        assert main(["test", str(path)]) == 1
        out = capsys.readouterr().out
        assert "FAIL  c / a: expected 3, got 2" in out
        assert "0/1 expectations passed" in out

    def test_missing_definition(self, tmp_path):
        assert main(["eval", str(tmp_path / "nope.yaml")]) == 1
