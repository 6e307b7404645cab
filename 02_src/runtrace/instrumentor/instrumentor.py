"""Source-to-source instrumentation of Python programs.

Every ``def`` / ``async def`` body is rewritten to::

    def work(x):
        _rt_activation = __runtrace__.enter('work', 'function')
        try:
            <function body>
        finally:
            __runtrace__.exit(_rt_activation)

so an ``end`` event fires on every exit path. Lambdas are wrapped at the call
boundary, and timer registrations are routed through
``__runtrace__.schedule`` so the scheduled callback is traced and reports
the scheduling activation as its parent. Generator bodies additionally have
their yields rewritten so the activation leaves the stack while suspended.

``__runtrace__`` is not imported by the output: the sandbox injects its
ExecutionContext into the program globals under that name.
"""

import ast
from typing import Protocol

from ..logging_config import get_logger
from ..models import EventKind

logger = get_logger(__name__)

RUNTIME_NAME = "__runtrace__"
ACTIVATION_VAR = "_rt_activation"

# method name -> index of the callback among positional arguments
TIMER_METHODS = {
    "call_later": 1,
    "call_at": 1,
    "call_soon": 0,
    "call_soon_threadsafe": 0,
    "add_done_callback": 0,
}
# threading.Timer(interval, function, ...)
TIMER_CONSTRUCTORS = {"Timer": 1}


class InstrumentationError(Exception):
    """The program could not be parsed, so nothing was instrumented."""

    def __init__(self, message: str, lineno: int | None = None, offset: int | None = None):
        self.message = message
        self.lineno = lineno
        self.offset = offset
        location = f" (line {lineno}, column {offset})" if lineno else ""
        super().__init__(f"{message}{location}")


class IInstrumentor(Protocol):
    """Rewrites program source to emit lifecycle events."""

    def instrument(self, source: str, filename: str = "<program>") -> str:
        """Return semantically equivalent source that emits lifecycle events."""
        ...


def _runtime_call(method: str, args: list[ast.expr]) -> ast.Call:
    return ast.Call(
        func=ast.Attribute(
            value=ast.Name(id=RUNTIME_NAME, ctx=ast.Load()),
            attr=method,
            ctx=ast.Load(),
        ),
        args=args,
        keywords=[],
    )


def _is_docstring(stmt: ast.stmt) -> bool:
    return (
        isinstance(stmt, ast.Expr)
        and isinstance(stmt.value, ast.Constant)
        and isinstance(stmt.value.value, str)
    )


_NESTED_SCOPES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)


def _own_nodes(node: ast.AST):
    """Walk a function body without entering nested scopes."""
    for child in ast.iter_child_nodes(node):
        if isinstance(child, _NESTED_SCOPES):
            continue
        yield child
        yield from _own_nodes(child)


def is_generator(node: ast.FunctionDef | ast.AsyncFunctionDef) -> bool:
    """True if the body itself yields (nested scopes do not count)."""
    return any(
        isinstance(child, (ast.Yield, ast.YieldFrom))
        for stmt in node.body
        if not isinstance(stmt, _NESTED_SCOPES)
        for child in [stmt, *_own_nodes(stmt)]
    )


def _as_list(result) -> list:
    if result is None:
        return []
    return result if isinstance(result, list) else [result]


def _activation() -> ast.Name:
    return ast.Name(id=ACTIVATION_VAR, ctx=ast.Load())


class _YieldRewriter(ast.NodeTransformer):
    """Keeps a generator's activation off the stack while it is suspended.

    Sync generators route every yield through ``yield from`` helpers, so
    ``send``/``throw``/``close`` restore the activation first. ``yield from``
    is not allowed in async generators: yield statements there are wrapped in
    try/finally, and yields inside larger expressions are bracketed by
    ``paused``/``resumed`` calls.
    """

    def __init__(self, is_async: bool) -> None:
        self._async = is_async

    def _skip(self, node):
        return node

    visit_FunctionDef = visit_AsyncFunctionDef = visit_Lambda = visit_ClassDef = _skip

    def visit_Yield(self, node: ast.Yield) -> ast.expr:
        self.generic_visit(node)
        value = node.value or ast.Constant(None)
        if self._async:
            paused = ast.Yield(value=_runtime_call("paused", [_activation(), value]))
            return _runtime_call("resumed", [_activation(), paused])
        return ast.YieldFrom(value=_runtime_call("suspend", [_activation(), value]))

    def visit_YieldFrom(self, node: ast.YieldFrom) -> ast.YieldFrom:
        self.generic_visit(node)
        node.value = _runtime_call("delegate", [_activation(), node.value])
        return node

    def _statement_yield(self, node: ast.stmt) -> list[ast.stmt]:
        # value is evaluated before the activation is paused
        yielded: ast.Yield = node.value
        if yielded.value is not None:
            yielded.value = self.visit(yielded.value)
        yielded.value = _runtime_call(
            "paused", [_activation(), yielded.value or ast.Constant(None)]
        )
        return [
            ast.Try(
                body=[node],
                handlers=[],
                orelse=[],
                finalbody=[ast.Expr(_runtime_call("resume", [_activation()]))],
            )
        ]

    def visit_Expr(self, node: ast.Expr):
        if self._async and isinstance(node.value, ast.Yield):
            return self._statement_yield(node)
        return self.generic_visit(node)

    def visit_Assign(self, node: ast.Assign):
        if self._async and isinstance(node.value, ast.Yield):
            node.targets = [self.visit(target) for target in node.targets]
            return self._statement_yield(node)
        return self.generic_visit(node)


class _Instrumenter(ast.NodeTransformer):
    """Single-use transformer; keeps a stack of enclosing class/function scopes."""

    def __init__(self) -> None:
        self._scopes: list[tuple[str, str]] = []

    def _display_name(self, name: str) -> str:
        if self._scopes and self._scopes[-1][0] == "class":
            return f"{self._scopes[-1][1]}.{name}"
        return name

    # Scopes

    def visit_ClassDef(self, node: ast.ClassDef) -> ast.ClassDef:
        self._scopes.append(("class", node.name))
        self.generic_visit(node)
        self._scopes.pop()
        return node

    def visit_FunctionDef(self, node):
        display = self._display_name(node.name)
        self._scopes.append(("function", node.name))
        self.generic_visit(node)
        self._scopes.pop()

        if is_generator(node):
            rewriter = _YieldRewriter(isinstance(node, ast.AsyncFunctionDef))
            node.body = [
                rewritten
                for stmt in node.body
                for rewritten in _as_list(rewriter.visit(stmt))
            ]

        body = list(node.body)
        head: list[ast.stmt] = []
        if body and _is_docstring(body[0]):
            head, body = [body[0]], body[1:]
        if not body:
            body = [ast.Pass()]

        enter = ast.Assign(
            targets=[ast.Name(id=ACTIVATION_VAR, ctx=ast.Store())],
            value=_runtime_call(
                "enter",
                [ast.Constant(display), ast.Constant(EventKind.FUNCTION.value)],
            ),
        )
        guarded = ast.Try(
            body=body,
            handlers=[],
            orelse=[],
            finalbody=[
                ast.Expr(
                    _runtime_call("exit", [ast.Name(id=ACTIVATION_VAR, ctx=ast.Load())])
                )
            ],
        )
        node.body = head + [enter, guarded]
        return node

    visit_AsyncFunctionDef = visit_FunctionDef

    # Lambdas

    def _wrap_lambda(self, node: ast.Lambda, name: str) -> ast.Call:
        self.generic_visit(node)
        return _runtime_call("traced", [node, ast.Constant(name)])

    def visit_Lambda(self, node: ast.Lambda) -> ast.Call:
        return self._wrap_lambda(node, "<lambda>")

    def visit_Assign(self, node: ast.Assign) -> ast.Assign:
        if (
            isinstance(node.value, ast.Lambda)
            and len(node.targets) == 1
            and isinstance(node.targets[0], ast.Name)
        ):
            node.value = self._wrap_lambda(node.value, node.targets[0].id)
            return node
        return self.generic_visit(node)

    # Timer registrations

    @staticmethod
    def _callback_position(node: ast.Call) -> int | None:
        func = node.func
        if isinstance(func, ast.Attribute):
            if func.attr in TIMER_METHODS:
                return TIMER_METHODS[func.attr]
            if func.attr in TIMER_CONSTRUCTORS:
                return TIMER_CONSTRUCTORS[func.attr]
        elif isinstance(func, ast.Name) and func.id in TIMER_CONSTRUCTORS:
            return TIMER_CONSTRUCTORS[func.id]
        return None

    def visit_Call(self, node: ast.Call) -> ast.Call:
        position = self._callback_position(node)
        if position is None:
            return self.generic_visit(node)

        # the callback cannot be located behind *args; leave the call alone
        if len(node.args) <= position or any(
            isinstance(arg, ast.Starred) for arg in node.args[: position + 1]
        ):
            return self.generic_visit(node)

        node.func = self.visit(node.func)
        args: list[ast.expr] = []
        for index, arg in enumerate(node.args):
            if index == position and isinstance(arg, ast.Lambda):
                # the callback wrapper already traces it
                self.generic_visit(arg)
                args.append(arg)
            else:
                args.append(self.visit(arg))
        keywords = [self.visit(keyword) for keyword in node.keywords]

        return ast.Call(
            func=ast.Attribute(
                value=ast.Name(id=RUNTIME_NAME, ctx=ast.Load()),
                attr="schedule",
                ctx=ast.Load(),
            ),
            args=[node.func, ast.Constant(position), *args],
            keywords=keywords,
        )


class _FunctionNameCollector(ast.NodeVisitor):
    def __init__(self) -> None:
        self.names: list[str] = []

    def _add(self, name: str) -> None:
        if name not in self.names:
            self.names.append(name)

    def visit_FunctionDef(self, node) -> None:
        self._add(node.name)
        self.generic_visit(node)

    visit_AsyncFunctionDef = visit_FunctionDef


def parse_program(source: str, filename: str = "<program>") -> ast.Module:
    """Parse program source, raising InstrumentationError on failure."""
    try:
        return ast.parse(source, filename=filename)
    except SyntaxError as e:
        raise InstrumentationError(e.msg or "invalid syntax", e.lineno, e.offset) from e
    except ValueError as e:
        # e.g. source containing null bytes
        raise InstrumentationError(str(e)) from e


def instrument_tree(tree: ast.Module) -> ast.Module:
    """Instrument a parsed module in place and return it."""
    tree = _Instrumenter().visit(tree)
    return ast.fix_missing_locations(tree)


def collect_function_names(source: str) -> list[str]:
    """Function names defined in the program, in source order. Empty if unparseable."""
    try:
        tree = ast.parse(source)
    except (SyntaxError, ValueError):
        return []
    collector = _FunctionNameCollector()
    collector.visit(tree)
    return collector.names


class Instrumentor:
    """Stateless, deterministic program rewriter."""

    def instrument(self, source: str, filename: str = "<program>") -> str:
        """Return semantically equivalent source that emits lifecycle events."""
        tree = parse_program(source, filename)
        instrumented = ast.unparse(instrument_tree(tree))
        logger.debug(
            "Instrumented %s: %d -> %d chars", filename, len(source), len(instrumented)
        )
        return instrumented


def instrument(source: str, filename: str = "<program>") -> str:
    """Module-level shortcut for Instrumentor().instrument()."""
    return Instrumentor().instrument(source, filename)
