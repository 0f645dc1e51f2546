"""Command-line entry point.

Usage:
    formcalc eval form.yaml
    formcalc eval form.yaml --values '{"price": 12}'
    formcalc validate "price * 2" "Math.round(x)"
    formcalc -v test form.yaml
"""

import argparse
import json
import logging
import sys

from .definition import load_definition
from .errors import DefinitionError
from .evaluator import ExpressionEngine
from .runner import run_cases

logger = logging.getLogger(__name__)


def _cmd_eval(args: argparse.Namespace) -> int:
    definition = load_definition(args.form)
    values = dict(definition.values)
    if args.values:
        try:
            overrides = json.loads(args.values)
        except json.JSONDecodeError as e:
            print(f"--values is not valid JSON: {e}", file=sys.stderr)
            return 2
        if not isinstance(overrides, dict):
            print("--values must be a JSON object", file=sys.stderr)
            return 2
        values.update(overrides)

    with definition.build_session() as session:
        results = session.evaluate_all(values)
        output = {
            "values": results,
            "templates": {
                name: session.process_template(text, values)
                for name, text in definition.templates.items()
            },
            "errors": session.errors,
            "stats": session.get_stats().model_dump(),
        }
    print(json.dumps(output, indent=2, default=str))
    return 1 if output["errors"] and args.strict else 0


def _cmd_validate(args: argparse.Namespace) -> int:
    engine = ExpressionEngine()
    failures = 0
    for expression in args.expressions:
        result = engine.validate(expression)
        if result.valid:
            deps = ", ".join(engine.get_dependencies(expression)) or "-"
            print(f"  OK    {expression}  (reads: {deps})")
        else:
            failures += 1
            print(f"  FAIL  {expression}: {result.error}")
    return 1 if failures else 0


def _cmd_test(args: argparse.Namespace) -> int:
    definition = load_definition(args.form)
    report = run_cases(definition)
    for r in report.results:
        if r.passed and not args.verbose:
            continue
        status = "PASS" if r.passed else "FAIL"
        line = f"  {status}  {r.case_name} / {r.target}: expected {r.expected!r}, got {r.actual!r}"
        if r.error:
            line += f" ({r.error})"
        print(line)
    print(f"  {report.passed}/{report.total} expectations passed")
    return 1 if report.failed else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="formcalc", description="Form calculation engine")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_eval = sub.add_parser("eval", help="Evaluate a form definition")
    p_eval.add_argument("form", help="Form definition YAML file")
    p_eval.add_argument("--values", help="JSON object of input values overriding the file's")
    p_eval.add_argument("--strict", action="store_true", help="Exit 1 if any field fails")
    p_eval.set_defaults(func=_cmd_eval)

    p_validate = sub.add_parser("validate", help="Check expression syntax")
    p_validate.add_argument("expressions", nargs="+")
    p_validate.set_defaults(func=_cmd_validate)

    p_test = sub.add_parser("test", help="Run the cases in a form definition")
    p_test.add_argument("form", help="Form definition YAML file")
    p_test.set_defaults(func=_cmd_test)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except DefinitionError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
