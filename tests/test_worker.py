"""Tests for the sandbox worker and execution strategies, run in-process."""

from __future__ import annotations

import io
import json
import operator
import random
import typing

import pytest

from kata.models import ChallengeType
from kata.sandbox.strategies import (
    STRATEGIES,
    ForbiddenCodeError,
    LabStrategy,
    MarkupStrategy,
    ProjectStrategy,
    QuizStrategy,
    SandboxFile,
    ScriptStrategy,
    check_source,
    new_namespace,
    public_view,
)
from kata.sandbox.worker import EXIT_OK, EXIT_SETUP_FAILED, Worker, describe, evaluate

ADD_TESTS = [
    {"index": 0, "text": "add(1, 1) should return 2.", "code": "add(1, 1) == 2"},
    {"index": 1, "text": "add(0, 0) should return 0.", "code": "add(0, 0) == 0"},
    {
        "index": 2,
        "text": "add(2, 2) should return 4.",
        "code": 'result = add(2, 2)\nassert result == 4, f"expected 4 got {result}"',
    },
]


def run_job(challenge_type: str, files: dict[str, str], tests: list[dict], kind: str = "python"):
    """Run a job without resource limits and return (exit code, events)."""
    channel = io.StringIO()
    job = {
        "challenge_id": "test",
        "challenge_type": challenge_type,
        "files": [{"name": name, "kind": kind, "contents": contents} for name, contents in files.items()],
        "tests": tests,
    }
    code = Worker(channel).run(job)
    events = [json.loads(line) for line in channel.getvalue().splitlines()]
    return code, events


def outcomes(events: list[dict]) -> list[dict]:
    return [e for e in events if e["event"] == "outcome"]


class TestWorker:
    """Tests for Worker.run."""

    def test_reports_one_outcome_per_test(self):
        code, events = run_job("script", {"main.py": "def add(a, b):\n    return a + b\n"}, ADD_TESTS)

        assert code == EXIT_OK
        assert events[0] == {"event": "ready"}
        assert events[-1] == {"event": "done"}
        assert [o["index"] for o in outcomes(events)] == [0, 1, 2]
        assert all(o["passed"] for o in outcomes(events))

    def test_third_test_fails_with_message(self):
        candidate = "def add(a, b):\n    return 5 if (a, b) == (2, 2) else a + b\n"
        _, events = run_job("script", {"main.py": candidate}, ADD_TESTS)

        results = outcomes(events)
        assert [o["passed"] for o in results] == [True, True, False]
        assert results[2]["message"] == "expected 4 got 5"

    def test_falsy_expression_reports_test_text(self):
        _, events = run_job("script", {"main.py": "def add(a, b):\n    return 0\n"}, ADD_TESTS[:1])
        assert outcomes(events)[0]["message"] == "add(1, 1) should return 2."

    def test_load_error_fails_every_test(self):
        _, events = run_job("script", {"main.py": "def add(a, b)\n"}, ADD_TESTS)

        results = outcomes(events)
        assert len(results) == 3
        assert not any(o["passed"] for o in results)
        assert all(o["message"].startswith("SyntaxError") for o in results)

    def test_test_exception_is_a_failure(self):
        _, events = run_job(
            "script",
            {"main.py": "def add(a, b):\n    return a / 0\n"},
            ADD_TESTS[:1],
        )
        assert outcomes(events)[0]["message"] == "ZeroDivisionError: division by zero"

    def test_unknown_challenge_type(self):
        code, events = run_job("video", {}, [])

        assert code == EXIT_SETUP_FAILED
        assert events[0]["event"] == "setup_failed"

    def test_host_imports_are_blocked(self):
        _, events = run_job("script", {"main.py": "import os\n"}, [{"index": 0, "text": "", "code": "True"}])
        assert outcomes(events)[0]["message"] == "ImportError: import of 'os' is not allowed in the sandbox"

    def test_safe_imports_work(self):
        _, events = run_job(
            "script",
            {"main.py": "import math\nfrom collections import Counter\nroot = math.isqrt(16)\n"},
            [{"index": 0, "text": "", "code": "root == 4"}],
        )
        assert outcomes(events)[0]["passed"]

    def test_blocked_builtins(self):
        _, events = run_job(
            "script",
            {"main.py": "def read():\n    return open('/etc/passwd').read()\n"},
            [{"index": 0, "text": "", "code": "read()"}],
        )
        assert outcomes(events)[0]["message"] == "NameError: name 'open' is not defined"

    def test_system_exit_in_candidate(self):
        _, events = run_job(
            "script",
            {"main.py": "raise SystemExit(3)\n"},
            [{"index": 0, "text": "", "code": "True"}],
        )
        assert outcomes(events)[0]["message"] == "SystemExit: 3"
        assert events[-1] == {"event": "done"}

    def test_base_exception_fails_only_its_test(self):
        candidate = (
            "def add(a, b):\n"
            "    if (a, b) == (0, 0):\n"
            "        raise KeyboardInterrupt\n"
            "    return a + b\n"
        )
        code, events = run_job("script", {"main.py": candidate}, ADD_TESTS)

        assert code == EXIT_OK
        assert [(o["passed"], o["message"]) for o in outcomes(events)] == [
            (True, ""),
            (False, "KeyboardInterrupt"),
            (True, ""),
        ]
        assert events[-1] == {"event": "done"}

    def test_custom_base_exception_subclass(self):
        candidate = "class Stop(BaseException):\n    pass\n\ndef add(a, b):\n    raise Stop('halt')\n"
        _, events = run_job("script", {"main.py": candidate}, ADD_TESTS[:2])

        assert [o["message"] for o in outcomes(events)] == ["Stop: halt", "Stop: halt"]

    def test_each_test_sees_fresh_candidate_state(self):
        candidate = "calls = []\n\ndef add(a, b):\n    calls.append((a, b))\n    return a + b\n"
        tests = [
            {"index": 0, "text": "", "code": "add(1, 1) == 2 and len(calls) == 1"},
            {"index": 1, "text": "", "code": "add(2, 2) == 4 and len(calls) == 1"},
        ]
        _, events = run_job("script", {"main.py": candidate}, tests)

        assert all(o["passed"] for o in outcomes(events))

    def test_introspection_escape_is_refused(self):
        candidate = (
            "def listing():\n"
            "    for cls in ().__class__.__base__.__subclasses__():\n"
            "        if cls.__name__ == '_wrap_close':\n"
            "            return cls.__init__.__globals__['listdir']('/')\n"
        )
        _, events = run_job("script", {"main.py": candidate}, [{"index": 0, "text": "", "code": "listing()"}])

        (result,) = outcomes(events)
        assert not result["passed"]
        assert result["message"].startswith("ForbiddenCodeError: main.py:")
        assert "etc" not in result["message"]

    def test_private_module_members_are_hidden(self):
        _, events = run_job(
            "script",
            {"main.py": "import random\n\ndef host():\n    return random._os\n"},
            [{"index": 0, "text": "", "code": "host()"}],
        )
        assert outcomes(events)[0]["message"] == "AttributeError: module 'random' has no attribute '_os'"

    def test_class_idioms_still_work(self):
        candidate = (
            "class Account:\n"
            "    def __init__(self, balance):\n"
            "        self.__balance = balance\n"
            "\n"
            "    def __repr__(self):\n"
            "        return f'{type(self).__name__}({self.__balance})'\n"
            "\n"
            "class Savings(Account):\n"
            "    def __init__(self, balance):\n"
            "        super().__init__(balance)\n"
            "\n"
            "if __name__ == '__main__':\n"
            "    print(Savings(5))\n"
        )
        _, events = run_job("script", {"main.py": candidate}, [{"index": 0, "text": "", "code": "output == 'Savings(5)\\n'"}])
        assert outcomes(events)[0]["passed"]


class TestEvaluate:
    """Tests for single test evaluation."""

    def test_expression_and_statements(self):
        namespace = new_namespace()
        namespace["x"] = 2
        output = io.StringIO()

        assert evaluate("x == 2", namespace, "", output) == (True, "")
        assert evaluate("y = x * 2\nassert y == 4", namespace, "", output) == (True, "")
        assert evaluate("x == 3", namespace, "", output) == (False, "assertion failed: x == 3")

    def test_tests_do_not_share_state(self):
        namespace = new_namespace()
        output = io.StringIO()

        evaluate("leaked = 1", namespace, "", output)
        assert "leaked" not in namespace

    def test_describe(self):
        assert describe(AssertionError("custom")) == "custom"
        assert describe(AssertionError()) == "AssertionError"
        assert describe(ValueError("bad")) == "ValueError: bad"
        assert len(describe(ValueError("x" * 5000))) == 2000


class TestStrategies:
    """Tests for the per-type execution strategies."""

    def test_every_challenge_type_has_a_strategy(self):
        assert set(STRATEGIES) == set(ChallengeType)

    def test_script_shares_namespace(self):
        files = [
            SandboxFile("a.py", "python", "x = 1\n"),
            SandboxFile("b.py", "python", "y = x + 1\n"),
        ]
        namespace = ScriptStrategy().load(files, io.StringIO())

        assert namespace["y"] == 2
        assert namespace["code"] == "x = 1\n\ny = x + 1\n"

    def test_lab_captures_output(self):
        output = io.StringIO()
        namespace = LabStrategy().load([SandboxFile("main.py", "python", "print('Hello, world')\n")], output)

        assert output.getvalue() == "Hello, world\n"
        assert namespace["__name__"] == "__main__"

    def test_project_modules_import_each_other(self):
        files = [
            SandboxFile("main.py", "python", "from shapes import area\n\ndef total(r):\n    return sum(area(w, h) for w, h in r)\n"),
            SandboxFile("shapes.py", "python", "def area(w, h):\n    return w * h\n"),
        ]
        namespace = ProjectStrategy().load(files, io.StringIO())

        assert namespace["main"].total([(1, 2), (3, 4)]) == 14
        assert set(namespace["modules"]) == {"main", "shapes"}

    def test_markup_document(self):
        files = [
            SandboxFile("index.html", "html", "<html><body><h1>Hello</h1></body></html>"),
            SandboxFile("styles.css", "css", "h1 { color: red; }"),
        ]
        namespace = MarkupStrategy().load(files, io.StringIO())

        assert namespace["document"].xpath("//h1")[0].text_content() == "Hello"
        assert "color: red" in namespace["css"]

    def test_markup_without_html(self):
        namespace = MarkupStrategy().load([SandboxFile("styles.css", "css", "p {}")], io.StringIO())
        assert namespace["document"] is None

    def test_quiz_answers(self):
        namespace = QuizStrategy().load([SandboxFile("answers.txt", "text", "2\n\n3\n")], io.StringIO())

        assert namespace["answers"][0] == 2
        assert namespace["answers"][1] == 3
        assert namespace["answers"][5] is None

    def test_quiz_rejects_non_numbers(self):
        with pytest.raises(ValueError, match="answers.txt:1: answer 'b' is not a number"):
            QuizStrategy().load([SandboxFile("answers.txt", "text", "b\n")], io.StringIO())


class TestSourceCheck:
    """Tests for the candidate source guard and module views."""

    @pytest.mark.parametrize(
        "source, message",
        [
            ("x = ().__class__", "main.py:1: access to attribute '__class__' is not allowed"),
            ("def f():\n    return getattr(1, 'real')", "main.py:2: use of 'getattr' is not allowed"),
            ("def g():\n    yield 1\nframe = g().gi_frame", "main.py:3: access to attribute 'gi_frame' is not allowed"),
            ("b = __builtins__", "main.py:1: use of '__builtins__' is not allowed"),
            ("from math import __loader__", "main.py:1: access to attribute '__loader__' is not allowed"),
        ],
    )
    def test_rejects_escapes(self, source: str, message: str):
        with pytest.raises(ForbiddenCodeError, match=message):
            check_source(source, "main.py")

    def test_accepts_ordinary_code(self):
        source = "class A:\n    def __init__(self):\n        self.__hidden = 1\n\nif __name__ == '__main__':\n    A()\n"
        assert check_source(source, "main.py") is not None

    def test_syntax_errors_propagate(self):
        with pytest.raises(SyntaxError):
            check_source("def f(:\n", "main.py")

    def test_public_view_drops_private_and_host_modules(self):
        assert public_view(random).randint == random.randint
        assert not hasattr(public_view(random), "_os")
        assert not hasattr(public_view(typing), "sys")
        assert not hasattr(public_view(typing), "get_type_hints")
        assert not hasattr(public_view(operator), "attrgetter")
        assert public_view(operator).add is operator.add
