from __future__ import annotations

import ast
import operator
import re
from collections.abc import Callable, Mapping
from typing import Any

from flowpatch.engine.templates import MISSING, resolve_path, resolve_template


class ExpressionError(Exception):
    """Raised when a filter expression cannot be parsed or evaluated."""

    def __init__(self, message: str, expression: str = "") -> None:
        super().__init__(message)
        self.expression = expression


TOKEN_RE = re.compile(
    r"""(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')"""
    r"""|(?P<template>\{\{[^{}]+\}\})"""
    r"""|(?P<op>===|!==|&&|\|\||!(?!=))"""
    r"""|(?P<word>(?<!\.)\b(?:true|false|null|undefined|contains)\b)"""
    r"""|(?P<tilde>~)"""
)
# `!` becomes unary `~` so it binds tighter than comparisons: `!a == b` is `(!a) == b`.
OPERATOR_REWRITES = {"===": "==", "!==": "!=", "&&": " and ", "||": " or ", "!": "~"}
WORD_REWRITES = {
    "true": "True",
    "false": "False",
    "null": "None",
    "undefined": "None",
    # Parsed as a binary operator with the same precedence as arithmetic.
    "contains": " @ ",
}
BINDING_PREFIX = "__tpl_"

COMPARISONS: dict[type[ast.cmpop], Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
}
STRING_METHODS: dict[str, Callable[[Any, Any], bool]] = {
    "includes": lambda target, item: item in target,
    "contains": lambda target, item: item in target,
    "startsWith": lambda target, item: str(target).startswith(str(item)),
    "endsWith": lambda target, item: str(target).endswith(str(item)),
}


def evaluate_expression(expression: str, *scopes: object) -> Any:
    """Evaluate a restricted boolean expression against ``scopes``.

    Supported: ``and``/``or``/``not`` (and ``&&``/``||``/``!``), comparisons,
    ``in``, ``contains``, ``.includes()``/``.startsWith()``/``.endsWith()``,
    literals, names and dotted paths with ``[n]`` indexing. ``{{path}}``
    placeholders are substituted first; unresolved ones become ``null``.

    ``!`` applies to the operand that follows it, while ``not`` keeps Python
    precedence: ``!a == b`` is ``(!a) == b`` but ``not a == b`` is
    ``not (a == b)``.
    """
    source = str(expression or "").strip()
    if not source:
        raise ExpressionError("Empty expression", source)

    translated, bindings = _translate(source, scopes)
    try:
        tree = ast.parse(translated.strip(), mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"Syntax error in expression: {exc.msg}", source) from exc

    walker = _Evaluator(source, bindings, scopes)
    try:
        return walker.visit(tree.body)
    except ExpressionError:
        raise
    except (TypeError, ValueError) as exc:
        raise ExpressionError(f"Cannot evaluate expression: {exc}", source) from exc


def _translate(source: str, scopes: tuple[object, ...]) -> tuple[str, dict[str, Any]]:
    bindings: dict[str, Any] = {}

    def _replace(match: re.Match[str]) -> str:
        kind = match.lastgroup
        token = match.group(0)
        if kind == "string":
            try:
                literal = ast.literal_eval(token)
            except (SyntaxError, ValueError) as exc:
                raise ExpressionError(f"Invalid string literal {token}", source) from exc
            if "{{" in literal:
                literal = resolve_template(literal, *scopes)
                literal = re.sub(r"\{\{[^{}]+\}\}", "", literal)
            return repr(literal)
        if kind == "template":
            value = resolve_path(token[2:-2], *scopes)
            name = f"{BINDING_PREFIX}{len(bindings)}"
            bindings[name] = None if value is MISSING else value
            return name
        if kind == "tilde":
            raise ExpressionError("Unsupported operator ~", source)
        if kind == "op":
            return OPERATOR_REWRITES[token]
        return WORD_REWRITES[token]

    return TOKEN_RE.sub(_replace, source), bindings


class _Evaluator:
    def __init__(self, source: str, bindings: Mapping[str, Any], scopes: tuple[object, ...]) -> None:
        self._source = source
        self._bindings = bindings
        self._scopes = scopes

    def visit(self, node: ast.AST) -> Any:
        handler = getattr(self, f"_visit_{type(node).__name__}", None)
        if handler is None:
            raise ExpressionError(
                f"Unsupported syntax in expression: {type(node).__name__}",
                self._source,
            )
        return handler(node)

    def _visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def _visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.visit(node.operand)
        if isinstance(node.op, (ast.Not, ast.Invert)):
            return not operand
        if isinstance(node.op, ast.USub) and isinstance(operand, (int, float)):
            return -operand
        raise ExpressionError("Unsupported unary operator", self._source)

    def _visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            compare = COMPARISONS.get(type(op))
            if compare is None:
                raise ExpressionError(f"Unsupported comparison: {type(op).__name__}", self._source)
            right = self.visit(comparator)
            if not compare(left, right):
                return False
            left = right
        return True

    def _visit_BinOp(self, node: ast.BinOp) -> bool:
        if not isinstance(node.op, ast.MatMult):
            raise ExpressionError("Arithmetic is not supported in filter expressions", self._source)
        return _contains(self.visit(node.left), self.visit(node.right))

    def _visit_Call(self, node: ast.Call) -> bool:
        func = node.func
        if not isinstance(func, ast.Attribute) or func.attr not in STRING_METHODS:
            raise ExpressionError("Function calls are not supported", self._source)
        if len(node.args) != 1 or node.keywords:
            raise ExpressionError(f"{func.attr}() takes exactly one argument", self._source)
        target = self.visit(func.value)
        if target is None:
            return False
        return STRING_METHODS[func.attr](target, self.visit(node.args[0]))

    def _visit_Constant(self, node: ast.Constant) -> Any:
        if isinstance(node.value, (str, int, float, bool)) or node.value is None:
            return node.value
        raise ExpressionError("Unsupported literal", self._source)

    def _visit_List(self, node: ast.List) -> list[Any]:
        return [self.visit(item) for item in node.elts]

    def _visit_Tuple(self, node: ast.Tuple) -> list[Any]:
        return [self.visit(item) for item in node.elts]

    def _visit_Name(self, node: ast.Name) -> Any:
        if node.id in self._bindings:
            return self._bindings[node.id]
        value = resolve_path(node.id, *self._scopes)
        if value is MISSING:
            raise ExpressionError(f"Unknown name '{node.id}'", self._source)
        return value

    def _visit_Attribute(self, node: ast.Attribute) -> Any:
        target = self.visit(node.value)
        if isinstance(target, Mapping):
            return target.get(node.attr)
        if node.attr == "length" and isinstance(target, (str, list, tuple)):
            return len(target)
        return None

    def _visit_Subscript(self, node: ast.Subscript) -> Any:
        target = self.visit(node.value)
        key = self.visit(node.slice)
        if isinstance(target, Mapping):
            return target.get(key)
        if isinstance(target, (list, tuple, str)) and isinstance(key, int) and not isinstance(key, bool):
            return target[key] if -len(target) <= key < len(target) else None
        return None


def _contains(container: Any, item: Any) -> bool:
    if container is None:
        return False
    if isinstance(container, str):
        return str(item) in container
    try:
        return item in container
    except TypeError:
        return False
