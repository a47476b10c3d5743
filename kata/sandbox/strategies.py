"""
Execution strategies - one per challenge type.

Strategies run inside the sandbox worker process. Each turns the candidate's
files into the namespace the challenge's tests are evaluated in. The mapping
from ChallengeType to strategy is closed: importing this module fails if a
challenge type has no strategy.

Candidate source is checked for introspection escapes before it is compiled,
then runs with a reduced builtins table and an import allowlist that hands
out public views of safe modules. This is best-effort containment on top of
the process boundary, environment scrubbing and resource limits applied by
the worker, not a security boundary on its own.
"""

from __future__ import annotations

import ast
import builtins
import contextlib
import io
import types
from typing import Any, Callable, Optional

from kata.models import ChallengeType, FileKind

# Pure-computation stdlib modules candidates may import
SAFE_MODULES = frozenset(
    {
        "abc",
        "array",
        "bisect",
        "calendar",
        "cmath",
        "collections",
        "copy",
        "dataclasses",
        "datetime",
        "decimal",
        "enum",
        "fractions",
        "functools",
        "heapq",
        "itertools",
        "json",
        "math",
        "numbers",
        "operator",
        "random",
        "re",
        "statistics",
        "string",
        "textwrap",
        "typing",
        "unicodedata",
    }
)

BLOCKED_BUILTINS = frozenset(
    {
        "open",
        "exec",
        "eval",
        "compile",
        "input",
        "breakpoint",
        "exit",
        "quit",
        "help",
        "copyright",
        "credits",
        "license",
        "getattr",
        "setattr",
        "delattr",
        "vars",
        "globals",
        "locals",
    }
)


class SandboxFile:
    """A candidate file as received by the worker."""

    def __init__(self, name: str, kind: str, contents: str):
        self.name = name
        self.kind = FileKind(kind)
        self.contents = contents

    @classmethod
    def from_dict(cls, data: dict) -> SandboxFile:
        return cls(data["name"], data["kind"], data.get("contents", ""))


# Special members that only return ordinary values
SAFE_DUNDERS = frozenset(
    {
        "__init__",
        "__new__",
        "__name__",
        "__qualname__",
        "__doc__",
        "__str__",
        "__repr__",
        "__len__",
        "__iter__",
        "__next__",
        "__contains__",
        "__getitem__",
        "__setitem__",
        "__eq__",
        "__ne__",
        "__lt__",
        "__le__",
        "__gt__",
        "__ge__",
        "__hash__",
        "__add__",
        "__sub__",
        "__mul__",
        "__enter__",
        "__exit__",
    }
)

# Names that hand out attribute access or namespaces by string
FORBIDDEN_NAMES = frozenset(
    {
        "getattr",
        "setattr",
        "delattr",
        "vars",
        "globals",
        "locals",
        "__builtins__",
        "__import__",
        "__loader__",
        "__spec__",
    }
)

# Frame and traceback attributes that lead back to module globals
FORBIDDEN_ATTRIBUTES = frozenset(
    {
        "gi_frame",
        "gi_code",
        "cr_frame",
        "cr_code",
        "ag_frame",
        "ag_code",
        "tb_frame",
        "tb_next",
        "f_back",
        "f_builtins",
        "f_code",
        "f_globals",
        "f_locals",
    }
)

# Safe-module members that resolve attributes or evaluate strings on request
HIDDEN_MEMBERS = {
    "functools": frozenset({"singledispatch", "singledispatchmethod"}),
    "operator": frozenset({"attrgetter", "methodcaller"}),
    "string": frozenset({"Formatter"}),
    "typing": frozenset({"ForwardRef", "get_type_hints"}),
}

_MATCH_CLASS = getattr(ast, "MatchClass", ())


class ForbiddenCodeError(Exception):
    """Raised when candidate source reaches for interpreter internals."""


def _forbidden_attribute(attr: str) -> bool:
    is_dunder = attr.startswith("__") and attr.endswith("__")
    return (is_dunder and attr not in SAFE_DUNDERS) or attr in FORBIDDEN_ATTRIBUTES


def check_source(source: str, filename: str) -> ast.Module:
    """
    Parse candidate source and reject introspection escapes.

    Runs before any candidate code is compiled. Special attributes outside
    ``SAFE_DUNDERS``, frame attributes and string-based attribute access
    (``getattr`` and friends) are refused. Name-mangled private attributes
    such as ``self.__balance`` are allowed.

    Raises:
        SyntaxError: If the source does not parse.
        ForbiddenCodeError: On the first forbidden construct.
    """
    tree = ast.parse(source, filename)
    for node in ast.walk(tree):
        if isinstance(node, ast.Name):
            if node.id in FORBIDDEN_NAMES:
                raise ForbiddenCodeError(f"{filename}:{node.lineno}: use of '{node.id}' is not allowed")
            continue
        if isinstance(node, ast.Attribute):
            attributes = [node.attr]
        elif isinstance(node, ast.ImportFrom):
            attributes = [alias.name for alias in node.names]
        elif isinstance(node, _MATCH_CLASS):
            attributes = list(node.kwd_attrs)
        else:
            continue
        for attr in attributes:
            if _forbidden_attribute(attr):
                raise ForbiddenCodeError(
                    f"{filename}:{node.lineno}: access to attribute '{attr}' is not allowed"
                )
    return tree


def compile_candidate(sandbox_file: SandboxFile) -> types.CodeType:
    tree = check_source(sandbox_file.contents, sandbox_file.name)
    return compile(tree, sandbox_file.name, "exec")


def public_view(module: types.ModuleType, _seen: Optional[dict] = None) -> types.ModuleType:
    """
    Copy a safe module's public members into a fresh module object.

    Private names, modules outside the allowlist and the members listed in
    ``HIDDEN_MEMBERS`` are left out, so ``random._os`` or ``typing.sys``
    never reach candidate code.
    """
    seen = {} if _seen is None else _seen
    if module.__name__ in seen:
        return seen[module.__name__]
    view = types.ModuleType(module.__name__, module.__doc__)
    seen[module.__name__] = view
    hidden = HIDDEN_MEMBERS.get(module.__name__, frozenset())
    for name, value in list(vars(module).items()):
        if name.startswith("_") or name in hidden:
            continue
        if isinstance(value, types.ModuleType):
            if value.__name__.split(".")[0] not in SAFE_MODULES:
                continue
            value = public_view(value, seen)
        setattr(view, name, value)
    return view


def make_importer(extra: Optional[Callable[[str], Optional[types.ModuleType]]] = None):
    """Build an ``__import__`` replacement honouring the allowlist."""
    real_import = builtins.__import__

    def restricted_import(name, globals=None, locals=None, fromlist=(), level=0):
        if level == 0 and extra is not None:
            module = extra(name)
            if module is not None:
                return module
        root = name.split(".")[0]
        if level != 0 or root not in SAFE_MODULES:
            raise ImportError(f"import of '{name}' is not allowed in the sandbox")
        return public_view(real_import(name, globals, locals, fromlist, level))

    return restricted_import


def make_builtins(importer=None) -> dict:
    """Copy the builtins table without host-access entry points."""
    table = {k: v for k, v in vars(builtins).items() if k not in BLOCKED_BUILTINS}
    table["__import__"] = importer or make_importer()
    return table


def new_namespace(name: str = "__main__", importer=None) -> dict:
    return {"__name__": name, "__builtins__": make_builtins(importer)}


class Strategy:
    """Base class: build the test namespace from candidate files."""

    challenge_type: ChallengeType

    def load(self, files: list[SandboxFile], output: io.StringIO) -> dict:
        """
        Run or parse the candidate files.

        Args:
            files: Candidate files in challenge order.
            output: Buffer receiving the candidate's stdout.

        Returns:
            Namespace the tests are evaluated in.

        Raises:
            Exception: Whatever the candidate code raised while loading.
        """
        raise NotImplementedError

    @staticmethod
    def python_files(files: list[SandboxFile]) -> list[SandboxFile]:
        return [f for f in files if f.kind is FileKind.PYTHON]

    @staticmethod
    def source(files: list[SandboxFile]) -> str:
        return "\n".join(f.contents for f in files)


class ScriptStrategy(Strategy):
    """All python files executed, in order, in one shared namespace."""

    challenge_type = ChallengeType.SCRIPT

    def load(self, files, output):
        namespace = new_namespace()
        python = self.python_files(files)
        with contextlib.redirect_stdout(output):
            for sandbox_file in python:
                exec(compile_candidate(sandbox_file), namespace)
        namespace["code"] = self.source(python)
        return namespace


class LabStrategy(Strategy):
    """Each python file run as its own ``__main__`` program, in order."""

    challenge_type = ChallengeType.LAB

    def load(self, files, output):
        namespace: dict = {}
        python = self.python_files(files)
        with contextlib.redirect_stdout(output):
            for sandbox_file in python:
                namespace = new_namespace("__main__")
                exec(compile_candidate(sandbox_file), namespace)
        if not namespace:
            namespace = new_namespace()
        namespace["code"] = self.source(python)
        return namespace


class ProjectStrategy(Strategy):
    """Each python file becomes an importable module named after the file."""

    challenge_type = ChallengeType.PROJECT

    def load(self, files, output):
        python = self.python_files(files)
        sources = {f.name.rsplit(".", 1)[0]: f for f in python}
        modules: dict[str, types.ModuleType] = {}

        def find_module(name: str) -> Optional[types.ModuleType]:
            if name in modules:
                return modules[name]
            if name not in sources:
                return None
            sandbox_file = sources[name]
            module = types.ModuleType(name)
            module.__dict__["__builtins__"] = make_builtins(importer)
            module.__dict__["__file__"] = sandbox_file.name
            # registered before execution so circular imports see a partial module
            modules[name] = module
            exec(compile_candidate(sandbox_file), module.__dict__)
            return module

        importer = make_importer(find_module)

        with contextlib.redirect_stdout(output):
            for name in sources:
                find_module(name)

        namespace = new_namespace(importer=importer)
        namespace.update(modules)
        namespace["modules"] = modules
        namespace["code"] = self.source(python)
        return namespace


class MarkupStrategy(Strategy):
    """HTML and CSS files parsed into an lxml document."""

    challenge_type = ChallengeType.MARKUP

    def load(self, files, output):
        from lxml import html as lxml_html

        markup = "\n".join(f.contents for f in files if f.kind is FileKind.HTML)
        css = "\n".join(f.contents for f in files if f.kind is FileKind.CSS)

        namespace = new_namespace()
        namespace["html"] = markup
        namespace["css"] = css
        namespace["code"] = self.source(files)
        namespace["document"] = lxml_html.document_fromstring(markup) if markup.strip() else None
        return namespace


class QuizStrategy(Strategy):
    """Answers submitted one per line, as 1-based answer indexes."""

    challenge_type = ChallengeType.QUIZ

    def load(self, files, output):
        answers: list[Optional[int]] = []
        for sandbox_file in files:
            for line_no, line in enumerate(sandbox_file.contents.splitlines(), start=1):
                line = line.strip()
                if not line:
                    continue
                if not line.isdigit():
                    raise ValueError(f"{sandbox_file.name}:{line_no}: answer '{line}' is not a number")
                answers.append(int(line))

        namespace = new_namespace()
        namespace["answers"] = _Answers(answers)
        return namespace


class _Answers(list):
    """Answer list that reads as unanswered instead of raising past its end."""

    def __getitem__(self, index: Any) -> Any:
        if isinstance(index, int) and index >= len(self):
            return None
        return super().__getitem__(index)


STRATEGIES: dict[ChallengeType, type[Strategy]] = {
    cls.challenge_type: cls
    for cls in (ScriptStrategy, LabStrategy, ProjectStrategy, MarkupStrategy, QuizStrategy)
}

_missing = set(ChallengeType) - set(STRATEGIES)
if _missing:
    raise RuntimeError(f"No execution strategy for: {', '.join(sorted(t.value for t in _missing))}")


def strategy_for(challenge_type: ChallengeType) -> Strategy:
    return STRATEGIES[challenge_type]()
