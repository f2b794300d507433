"""Run one untrusted sort() submission against one input array.

Isolation happens in layers:
  - The source is parsed (never executed) in the server process and rejected
    when it imports anything, touches dunder names or underscore attributes,
    or calls introspection/IO builtins.
  - It then runs in a fresh ``python -I -S`` subprocess with an empty
    environment, an empty temporary working directory and POSIX resource
    limits (CPU seconds, address space, no file writes, no new processes).
  - Inside the child the code sees a whitelisted ``__builtins__`` only.
  - The wall-clock timeout kills the child; no partial result survives it.
"""

import ast
import json
import logging
import math
import subprocess
import sys
import tempfile
import textwrap
import time

from config import BattleConfig
from errors import ExecutionFailure, ExecutionTimeout, InvalidSubmission, RuntimeFault
from models import ExecutionOutcome

logger = logging.getLogger(__name__)

ENTRY_POINT = "sort"

_FORBIDDEN_NAMES = {
    "eval", "exec", "compile", "open", "input", "help", "breakpoint",
    "getattr", "setattr", "delattr", "globals", "locals", "vars", "dir",
    "memoryview", "type", "object", "super", "classmethod", "staticmethod",
    "property", "exit", "quit",
}
# Frame, code and traceback objects lead back to the runner's globals.
_FORBIDDEN_ATTRIBUTE_PREFIXES = ("_", "f_", "gi_", "cr_", "ag_", "tb_", "co_")
_FORBIDDEN_NODES = (
    ast.Import, ast.ImportFrom, ast.Global, ast.Nonlocal, ast.ClassDef,
    ast.AsyncFunctionDef, ast.Await, ast.AsyncFor, ast.AsyncWith,
)


RUNNER_SCRIPT = textwrap.dedent("""\
    import json, sys

    try:
        import resource
    except ImportError:
        resource = None

    data = json.loads(sys.stdin.read())

    def reply(payload):
        sys.stdout.write(json.dumps(payload))
        sys.stdout.flush()

    if resource is not None:
        limits = data["limits"]
        resource.setrlimit(resource.RLIMIT_CPU, (limits["cpu_seconds"], limits["cpu_seconds"]))
        resource.setrlimit(resource.RLIMIT_AS, (limits["memory_bytes"], limits["memory_bytes"]))
        resource.setrlimit(resource.RLIMIT_FSIZE, (0, 0))
        try:
            resource.setrlimit(resource.RLIMIT_NPROC, (0, 0))
        except (ValueError, OSError):
            pass

    import builtins
    safe_builtins = {name: getattr(builtins, name) for name in data["builtins"]}
    namespace = {"__builtins__": safe_builtins, "__name__": "submission"}

    try:
        exec(compile(data["code"], "<submission>", "exec"), namespace)
    except BaseException as exc:
        reply({"ok": False, "kind": "runtime_fault", "error": type(exc).__name__ + ": " + str(exc)})
        sys.exit(0)

    fn = namespace.get(data["entry_point"])
    if not callable(fn):
        reply({"ok": False, "kind": "invalid_submission",
               "error": "No callable " + data["entry_point"] + "(arr) defined"})
        sys.exit(0)

    arr = list(data["input"])
    try:
        result = fn(arr)
    except BaseException as exc:
        reply({"ok": False, "kind": "runtime_fault", "error": type(exc).__name__ + ": " + str(exc)})
        sys.exit(0)

    # In-place sorts that return None hand back their argument.
    if result is None:
        result = arr
    if not isinstance(result, (list, tuple)) or not all(
            type(item) is int for item in result):
        reply({"ok": False, "kind": "runtime_fault",
               "error": data["entry_point"] + "() must return a list of integers"})
        sys.exit(0)

    reply({"ok": True, "result": list(result)})
""")

SAFE_BUILTINS = (
    "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter",
    "float", "frozenset", "int", "isinstance", "iter", "len", "list", "map",
    "max", "min", "next", "pow", "range", "reversed", "round", "set", "slice",
    "sorted", "str", "sum", "tuple", "zip",
    "ArithmeticError", "Exception", "IndexError", "KeyError", "RecursionError",
    "RuntimeError", "StopIteration", "TypeError", "ValueError", "ZeroDivisionError",
)


class _SubmissionGuard(ast.NodeVisitor):
    def __init__(self):
        self.violations = []

    def visit(self, node):
        if isinstance(node, _FORBIDDEN_NODES):
            self._violation(f"{type(node).__name__} is not allowed", node)
            return
        return super().visit(node)

    def visit_Name(self, node):
        if node.id.startswith("__"):
            self._violation(f"name {node.id!r} is not allowed", node)
        elif node.id in _FORBIDDEN_NAMES:
            self._violation(f"{node.id}() is not available", node)

    def visit_Attribute(self, node):
        if node.attr.startswith(_FORBIDDEN_ATTRIBUTE_PREFIXES):
            self._violation(f"attribute {node.attr!r} is not allowed", node)
        self.generic_visit(node)

    def visit_FunctionDef(self, node):
        if node.name.startswith("__"):
            self._violation(f"function name {node.name!r} is not allowed", node)
        self.generic_visit(node)

    def visit_arg(self, node):
        if node.arg.startswith("__"):
            self._violation(f"argument name {node.arg!r} is not allowed", node)

    def _violation(self, message, node):
        self.violations.append(f"{message} (line {getattr(node, 'lineno', 0)})")


def _accepts_single_array(fn):
    args = fn.args
    positional = args.posonlyargs + args.args
    if not positional and args.vararg is None:
        return False
    required_positional = len(positional) - len(args.defaults)
    if required_positional > 1:
        return False
    return all(default is not None for default in args.kw_defaults)


def validate_submission(code, max_code_bytes=None):
    """Statically check a submission; raises InvalidSubmission."""
    if not isinstance(code, str) or not code.strip():
        raise InvalidSubmission("Submission is empty")
    if max_code_bytes is not None and len(code.encode("utf-8")) > max_code_bytes:
        raise InvalidSubmission(f"Submission exceeds {max_code_bytes} bytes")
    try:
        tree = ast.parse(code, filename="<submission>", mode="exec")
    except SyntaxError as exc:
        raise InvalidSubmission(f"Syntax error: {exc.msg} (line {exc.lineno})") from exc

    guard = _SubmissionGuard()
    guard.visit(tree)
    if guard.violations:
        raise InvalidSubmission("; ".join(guard.violations))

    entry = [node for node in tree.body
             if isinstance(node, ast.FunctionDef) and node.name == ENTRY_POINT]
    if not entry:
        raise InvalidSubmission(f"No top-level {ENTRY_POINT}(arr) function defined")
    if not _accepts_single_array(entry[-1]):
        raise InvalidSubmission(f"{ENTRY_POINT}() must take a single array argument")
    return tree


class SandboxExecutor:
    def __init__(self, config=None, python=None):
        self.config = config or BattleConfig()
        self.python = python or sys.executable

    def _limits(self, timeout_ms):
        return {
            "cpu_seconds": max(1, math.ceil(timeout_ms / 1000)) + 1,
            "memory_bytes": self.config.memory_limit_mb * 1024 * 1024,
        }

    def run(self, code, test_input, timeout_ms=None):
        """Execute code against test_input; returns (result, elapsed_ms).

        Raises InvalidSubmission, ExecutionTimeout or RuntimeFault.
        """
        timeout_ms = timeout_ms or self.config.submission_timeout_ms
        validate_submission(code, self.config.max_code_bytes)

        payload = json.dumps({
            "code": code,
            "entry_point": ENTRY_POINT,
            "input": list(test_input),
            "builtins": SAFE_BUILTINS,
            "limits": self._limits(timeout_ms),
        })

        with tempfile.TemporaryDirectory(prefix="sort-battle-") as workdir:
            start = time.monotonic()
            try:
                proc = subprocess.run(
                    [self.python, "-I", "-S", "-c", RUNNER_SCRIPT],
                    input=payload,
                    capture_output=True,
                    text=True,
                    timeout=timeout_ms / 1000,
                    cwd=workdir,
                    env={},
                )
            except subprocess.TimeoutExpired:
                raise ExecutionTimeout(timeout_ms) from None
            elapsed_ms = int((time.monotonic() - start) * 1000)

        stdout = proc.stdout.strip()
        if not stdout:
            stderr = proc.stderr.strip()[-200:]
            raise RuntimeFault(stderr or f"Sandbox process exited with status {proc.returncode}")
        try:
            answer = json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise RuntimeFault(f"Sandbox produced invalid output: {exc}") from exc

        if not answer.get("ok"):
            if answer.get("kind") == InvalidSubmission.kind:
                raise InvalidSubmission(answer.get("error", "Invalid submission"))
            raise RuntimeFault(answer.get("error", "Runtime error"))
        return answer["result"], elapsed_ms

    def execute(self, participant_id, code, test_input, timeout_ms=None):
        """Like run(), but folds failures into an ExecutionOutcome."""
        timeout_ms = timeout_ms or self.config.submission_timeout_ms
        start = time.monotonic()
        try:
            result, elapsed_ms = self.run(code, test_input, timeout_ms)
        except ExecutionFailure as exc:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.info("Submission from %s failed (%s): %s", participant_id, exc.kind, exc.message)
            return ExecutionOutcome.failure(participant_id, elapsed_ms, exc.kind, exc.message)
        logger.debug("Submission from %s sorted %d items in %dms", participant_id, len(result), elapsed_ms)
        return ExecutionOutcome.success(participant_id, elapsed_ms, result)
