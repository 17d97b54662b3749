"""
Safe boolean expressions for decisions, edge conditions and transforms.

Expressions are written in a small JavaScript-flavoured syntax, e.g.
``$.data.iteration >= $.data.maxIterations && result.branch === 'true'``.
Variable references are resolved up front and bound to placeholder names,
the remaining text is translated to Python, checked against an AST
whitelist and evaluated with no builtins available.
"""

from typing import Any, Dict, Iterable, List, Mapping, Tuple
import ast
import re

from flowpilot.engine.errors import ExpressionError
from flowpilot.engine.resolver import resolve, as_scope


# Bare roots that may be referenced without the `$.` prefix
REFERENCE_ROOTS = ("result", "data", "nodeOutputs", "context")

_ACCESSOR = r"""(?:\.[A-Za-z_]\w*|\[\s*(?:-?\d+|'[^']*'|"[^"]*")\s*\])"""

_REFERENCE_RE = re.compile(
    r"\$\.[A-Za-z_]\w*" + _ACCESSOR + "*"
    + r"|\b(?:" + "|".join(REFERENCE_ROOTS) + r")" + _ACCESSOR + "+"
)

# String literals are kept verbatim; everything else gets translated
_STRING_RE = re.compile(r"""('(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")""")

_OPERATORS: List[Tuple["re.Pattern[str]", str]] = [
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
    (re.compile(r"\b(?:null|undefined)\b"), "None"),
]


def _length(value: Any) -> int:
    if value is None:
        return 0
    try:
        return len(value)
    except TypeError:
        return 0


def _exists(value: Any) -> bool:
    return value is not None


def _empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


def _contains(container: Any, item: Any) -> bool:
    if container is None:
        return False
    if isinstance(container, str):
        return str(item) in container
    try:
        return item in container
    except TypeError:
        return False


SAFE_FUNCTIONS: Dict[str, Any] = {
    "exists": _exists,
    "empty": _empty,
    "length": _length,
    "contains": _contains,
    "len": _length,
    "any": any,
    "all": all,
    "min": min,
    "max": max,
    "sum": sum,
    "abs": abs,
    "round": round,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
}


class _ExpressionValidator(ast.NodeVisitor):
    ALLOWED_NODES = (
        ast.Expression,
        ast.BoolOp,
        ast.BinOp,
        ast.UnaryOp,
        ast.Compare,
        ast.IfExp,
        ast.Call,
        ast.Name,
        ast.Load,
        ast.Constant,
        ast.Subscript,
        ast.Slice,
        ast.List,
        ast.Tuple,
    )

    ALLOWED_BINOPS = (
        ast.Add,
        ast.Sub,
        ast.Mult,
        ast.Div,
        ast.FloorDiv,
        ast.Mod,
    )

    ALLOWED_UNARY = (ast.Not, ast.USub, ast.UAdd)

    ALLOWED_CMPS = (
        ast.Eq,
        ast.NotEq,
        ast.Lt,
        ast.Gt,
        ast.LtE,
        ast.GtE,
        ast.In,
        ast.NotIn,
        ast.Is,
        ast.IsNot,
    )

    def __init__(self, allowed_names: Iterable[str]) -> None:
        self.allowed_names = set(allowed_names)

    def generic_visit(self, node: ast.AST) -> None:
        if isinstance(node, (ast.cmpop, ast.operator, ast.boolop, ast.unaryop)):
            return
        if not isinstance(node, self.ALLOWED_NODES):
            raise ExpressionError(f"Disallowed expression node: {type(node).__name__}")
        super().generic_visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        if not isinstance(node.func, ast.Name) or node.func.id not in SAFE_FUNCTIONS:
            raise ExpressionError("Only whitelisted helper functions can be used in expressions")
        if node.keywords:
            raise ExpressionError("Keyword arguments are not allowed in expressions")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id not in self.allowed_names and node.id not in SAFE_FUNCTIONS:
            raise ExpressionError(f"Unknown variable '{node.id}' in expression")

    def visit_BinOp(self, node: ast.BinOp) -> None:
        if not isinstance(node.op, self.ALLOWED_BINOPS):
            raise ExpressionError(f"Operator '{type(node.op).__name__}' is not allowed")
        self.generic_visit(node)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> None:
        if not isinstance(node.op, self.ALLOWED_UNARY):
            raise ExpressionError(f"Unary op '{type(node.op).__name__}' is not allowed")
        self.generic_visit(node)

    def visit_Compare(self, node: ast.Compare) -> None:
        for op in node.ops:
            if not isinstance(op, self.ALLOWED_CMPS):
                raise ExpressionError(f"Comparator '{type(op).__name__}' is not allowed")
        self.generic_visit(node)

    def visit_Subscript(self, node: ast.Subscript) -> None:
        if not isinstance(node.value, ast.Name):
            raise ExpressionError("Only placeholder variables can be subscripted")
        if node.value.id not in self.allowed_names:
            raise ExpressionError("Subscripted value is not a placeholder")
        self.generic_visit(node)


def _translate(expression: str, scope: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    bindings: Dict[str, Any] = {}
    pieces: List[str] = []

    def _bind(match: "re.Match[str]") -> str:
        placeholder = f"__ref_{len(bindings)}"
        bindings[placeholder] = resolve(match.group(0), scope)
        return placeholder

    for index, part in enumerate(_STRING_RE.split(expression)):
        # Odd indexes are the captured string literals
        if index % 2 == 1:
            pieces.append(part)
            continue
        part = _REFERENCE_RE.sub(_bind, part)
        for pattern, replacement in _OPERATORS:
            part = pattern.sub(replacement, part)
        pieces.append(part)

    return "".join(pieces).strip(), bindings


def compile_expression(expression: str, scope: Any = None) -> Tuple[Any, Dict[str, Any]]:
    """
    Translate and validate an expression.

    Args:
        expression: Source expression
        scope: Mapping or execution state used to bind references

    Returns:
        Tuple of (compiled code object, placeholder bindings)

    Raises:
        ExpressionError: If the expression is empty, malformed or unsafe
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionError("Expression is empty")

    resolved_scope = as_scope(scope)
    expr_str, bindings = _translate(expression, resolved_scope)

    # Roots can also be used directly, e.g. `result` or `data['key']`
    for root in REFERENCE_ROOTS:
        bindings.setdefault(root, resolved_scope.get(root))

    try:
        tree = ast.parse(expr_str, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression '{expression}': {e.msg}") from e

    _ExpressionValidator(bindings.keys()).visit(tree)
    return compile(tree, "<expression>", "eval"), bindings


def validate_expression(expression: str) -> None:
    """Check an expression's syntax and safety without evaluating it."""
    compile_expression(expression, {})


def evaluate_expression(expression: str, scope: Any) -> Any:
    """
    Evaluate an expression against a scope and return the raw result.

    Raises:
        ExpressionError: On unsafe syntax or a runtime failure
    """
    compiled, bindings = compile_expression(expression, scope)

    safe_locals = dict(SAFE_FUNCTIONS)
    safe_locals.update(bindings)
    try:
        return eval(compiled, {"__builtins__": {}}, safe_locals)
    except Exception as e:
        raise ExpressionError(f"Failed to evaluate '{expression}': {e}") from e


def evaluate_condition(expression: str, scope: Any) -> bool:
    """Evaluate an expression and coerce the result to ``bool``."""
    return bool(evaluate_expression(expression, scope))
