import asyncio
import os
import shutil
import sys
import time

import pytest

from app.features.execution import languages
from app.features.execution.languages import Language, LocalRecipe
from app.features.execution.local_engine import (
    ARTIFACT_PREFIX,
    LocalExecutionEngine,
    detect_java_class,
    parse_java_major,
    sanitize_java_source,
)
from app.features.execution.schemas import Submission, TestCase

SUM_PROGRAM = "a, b = map(int, input().split())\nprint(a + b)\n"


def _leftovers(path):
    return [name for name in os.listdir(path) if name.startswith(ARTIFACT_PREFIX)]


@pytest.mark.asyncio
async def test_python_submission_is_graded(judge_settings):
    engine = LocalExecutionEngine(judge_settings)
    submission = Submission(
        language="python",
        code=SUM_PROGRAM,
        test_cases=[
            TestCase(input="2 3\n", expected_output="5", marks=5),
            TestCase(input="10 20\n", expected_output="31", marks=5, is_hidden=True),
        ],
    )

    result = await engine.run_submission(submission)

    assert result.compilation_error == ""
    first, second = result.test_case_results
    assert first.status == "passed"
    assert first.marks_awarded == 5
    assert second.status == "failed"
    assert second.output == "30"
    assert second.marks_awarded == 0
    assert second.is_hidden is True
    assert result.marks_awarded == 5
    assert _leftovers(judge_settings.judge_temp_dir) == []


@pytest.mark.asyncio
async def test_hello_world_earns_full_marks(judge_settings):
    engine = LocalExecutionEngine(judge_settings)
    result = await engine.run_submission(
        Submission(
            language="python",
            code="print('Hello, World!')",
            test_cases=[TestCase(input="", expected_output="Hello, World!", marks=10)],
        )
    )

    (row,) = result.test_case_results
    assert row.status == "passed"
    assert row.marks_awarded == 10
    assert row.max_marks == 10


@pytest.mark.asyncio
async def test_unsupported_language_returns_compilation_error(judge_settings):
    engine = LocalExecutionEngine(judge_settings)
    result = await engine.run_submission(
        Submission(language="ruby", code="puts 1", test_cases=[TestCase(expected_output="1", marks=1)])
    )

    assert result.compilation_error == "Language ruby is not supported on this judge."
    assert result.test_case_results == []
    assert _leftovers(judge_settings.judge_temp_dir) == []


@pytest.mark.asyncio
async def test_runtime_error_keeps_stderr(judge_settings):
    engine = LocalExecutionEngine(judge_settings)
    result = await engine.run_submission(
        Submission(language="py", code="print('partial')\n1 / 0\n", test_cases=[TestCase(expected_output="x", marks=2)])
    )

    (row,) = result.test_case_results
    assert row.status == "runtime_error"
    assert "ZeroDivisionError" in row.error
    assert row.output == "partial"
    assert row.marks_awarded == 0


@pytest.mark.asyncio
async def test_time_limit_is_enforced_per_test_case(judge_settings):
    engine = LocalExecutionEngine(judge_settings)
    code = (
        "import sys\n"
        "if sys.stdin.readline().strip() == 'spin':\n"
        "    while True:\n"
        "        pass\n"
        "print('done')\n"
    )
    started = time.perf_counter()
    result = await engine.run_submission(
        Submission(
            language="python",
            code=code,
            time_limit=300,
            test_cases=[
                TestCase(input="spin\n", expected_output="done", marks=1),
                TestCase(input="go\n", expected_output="done", marks=1),
            ],
        )
    )
    elapsed = time.perf_counter() - started

    spun, finished = result.test_case_results
    assert spun.status == "time_limit_exceeded"
    assert spun.error == "Time limit exceeded"
    assert finished.status == "passed"
    assert elapsed < 10
    assert _leftovers(judge_settings.judge_temp_dir) == []


@pytest.mark.asyncio
async def test_crlf_output_matches(judge_settings):
    engine = LocalExecutionEngine(judge_settings)
    result = await engine.run_submission(
        Submission(
            language="python",
            code="import sys\nsys.stdout.write('a\\r\\nb\\r\\n')\n",
            test_cases=[TestCase(expected_output="a\nb", marks=1)],
        )
    )
    assert result.test_case_results[0].status == "passed"


@pytest.mark.asyncio
async def test_concurrent_submissions_do_not_collide(judge_settings):
    engine = LocalExecutionEngine(judge_settings)
    submissions = [
        Submission(
            language="python",
            code=f"print(input() + '-{idx}')\n",
            test_cases=[TestCase(input=f"run{idx}\n", expected_output=f"run{idx}-{idx}", marks=1)],
        )
        for idx in range(5)
    ]

    results = await asyncio.gather(*(engine.run_submission(s) for s in submissions))

    assert all(r.test_case_results[0].status == "passed" for r in results)
    assert _leftovers(judge_settings.judge_temp_dir) == []


@pytest.mark.asyncio
async def test_falls_back_to_alternate_interpreter_on_probe(judge_settings):
    judge_settings.python_binaries = ("definitely-not-python-xyz", sys.executable)
    engine = LocalExecutionEngine(judge_settings)

    result = await engine.run_submission(
        Submission(language="python", code="print('hi')", test_cases=[TestCase(expected_output="hi", marks=1)])
    )

    assert result.test_case_results[0].status == "passed"


@pytest.mark.asyncio
async def test_falls_back_to_alternate_interpreter_at_run_time(judge_settings, monkeypatch):
    judge_settings.python_binaries = ("definitely-not-python-xyz", sys.executable)
    engine = LocalExecutionEngine(judge_settings)

    async def optimistic_probe(binary):
        return True

    monkeypatch.setattr(engine, "_probe", optimistic_probe)

    result = await engine.run_submission(
        Submission(
            language="python",
            code="print(input())",
            test_cases=[
                TestCase(input="one\n", expected_output="one", marks=1),
                TestCase(input="two\n", expected_output="two", marks=1),
            ],
        )
    )

    assert [r.status for r in result.test_case_results] == ["passed", "passed"]


@pytest.mark.asyncio
async def test_missing_compiler_reports_install_hint(judge_settings, monkeypatch):
    hint = "gcc not found. Install it."
    monkeypatch.setitem(
        languages.LOCAL_RECIPES,
        Language.C,
        LocalRecipe(extension="c", compiler="no-such-gcc-xyz", missing_toolchain_hint=hint),
    )
    engine = LocalExecutionEngine(judge_settings)

    result = await engine.run_submission(
        Submission(language="c", code="int main(void){return 0;}", test_cases=[TestCase(marks=1)])
    )

    assert result.compilation_error == hint
    assert result.test_case_results == []
    assert _leftovers(judge_settings.judge_temp_dir) == []


@pytest.mark.skipif(shutil.which("gcc") is None, reason="gcc not installed")
@pytest.mark.asyncio
async def test_c_compile_error_short_circuits(judge_settings):
    engine = LocalExecutionEngine(judge_settings)
    result = await engine.run_submission(
        Submission(
            language="c",
            code="int main( {",
            test_cases=[TestCase(expected_output="1", marks=1), TestCase(expected_output="2", marks=1)],
        )
    )

    assert result.compilation_error
    assert result.test_case_results == []
    assert _leftovers(judge_settings.judge_temp_dir) == []


@pytest.mark.skipif(shutil.which("gcc") is None, reason="gcc not installed")
@pytest.mark.asyncio
async def test_c_submission_runs_compiled_binary(judge_settings):
    engine = LocalExecutionEngine(judge_settings)
    code = '#include <stdio.h>\nint main(void){int a,b;scanf("%d %d",&a,&b);printf("%d\\n",a*b);return 0;}\n'
    result = await engine.run_submission(
        Submission(language="c", code=code, test_cases=[TestCase(input="6 7\n", expected_output="42", marks=3)])
    )

    assert result.compilation_error == ""
    assert result.test_case_results[0].status == "passed"
    assert _leftovers(judge_settings.judge_temp_dir) == []


@pytest.mark.skipif(shutil.which("javac") is None, reason="JDK not installed")
@pytest.mark.asyncio
async def test_java_submission_uses_declared_class_name(judge_settings):
    engine = LocalExecutionEngine(judge_settings)
    code = (
        "# Your code here\n"
        "public class Solution {\n"
        "    public static void main(String[] args) {\n"
        '        System.out.println("Hello, World!");\n'
        "    }\n"
        "}\n"
    )
    result = await engine.run_submission(
        Submission(language="java", code=code, time_limit=5000, test_cases=[TestCase(expected_output="Hello, World!", marks=1)])
    )

    assert result.compilation_error == ""
    assert result.test_case_results[0].status == "passed"
    assert _leftovers(judge_settings.judge_temp_dir) == []


def test_sweep_removes_only_stale_artifacts(judge_settings):
    temp_dir = judge_settings.judge_temp_dir
    stale = os.path.join(temp_dir, f"{ARTIFACT_PREFIX}old.py")
    fresh = os.path.join(temp_dir, f"{ARTIFACT_PREFIX}new.py")
    unrelated = os.path.join(temp_dir, "notes.txt")
    stale_dir = os.path.join(temp_dir, f"{ARTIFACT_PREFIX}olddir")
    os.makedirs(stale_dir)
    for path in (stale, fresh, unrelated, os.path.join(stale_dir, "Main.java")):
        with open(path, "w") as fh:
            fh.write("x")
    old = time.time() - judge_settings.judge_stale_file_age_s - 60
    for path in (stale, unrelated, stale_dir):
        os.utime(path, (old, old))

    LocalExecutionEngine(judge_settings)._sweep_stale_artifacts()

    assert not os.path.exists(stale)
    assert not os.path.exists(stale_dir)
    assert os.path.exists(fresh)
    assert os.path.exists(unrelated)


def test_sanitize_java_source_comments_placeholder_lines():
    code = "# Your code here\npublic class Main {}\n"
    cleaned = sanitize_java_source(code)
    assert cleaned.startswith("// Your code here")
    assert "public class Main {}" in cleaned
    assert sanitize_java_source("public class Main {}") == "public class Main {}"


@pytest.mark.parametrize(
    "code, expected",
    [
        ("public class Solution { }", "Solution"),
        ("class Helper {}\npublic class Runner {}", "Runner"),
        ("class Foo {}", "Foo"),
        ("int x = 1;", None),
    ],
)
def test_detect_java_class(code, expected):
    assert detect_java_class(code) == expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ('openjdk version "17.0.1" 2021-10-19', 17),
        ('java version "1.8.0_292"', 8),
        ("javac 21.0.2", 21),
        ("javac 1.8.0_292", 8),
        ("no version here", None),
    ],
)
def test_parse_java_major(text, expected):
    assert parse_java_major(text) == expected


@pytest.mark.asyncio
async def test_flooding_stdout_stops_at_output_limit(judge_settings):
    judge_settings.judge_max_output_bytes = 1024 * 1024
    engine = LocalExecutionEngine(judge_settings)
    code = "import sys\nwhile True:\n    sys.stdout.write('x' * 65536)\n"

    result = await engine.run_submission(
        Submission(language="python", code=code, time_limit=5000, test_cases=[TestCase(expected_output="x", marks=1)])
    )

    (row,) = result.test_case_results
    assert row.status == "runtime_error"
    assert row.error == "Output limit exceeded"
    assert 0 < len(row.output) <= 1000
    assert row.marks_awarded == 0
    assert _leftovers(judge_settings.judge_temp_dir) == []


@pytest.mark.asyncio
async def test_source_with_lone_surrogate_is_a_compilation_error(judge_settings):
    engine = LocalExecutionEngine(judge_settings)
    # Request bodies decoded from JSON can carry lone surrogates such as "\ud800".
    submission = Submission.model_construct(
        language="python",
        code="print('hi')  # \ud800",
        test_cases=[TestCase(expected_output="hi", marks=1)],
        time_limit=2000,
        memory_limit=256000,
    )

    result = await engine.run_submission(submission)

    assert result.compilation_error.startswith("Source code is not valid UTF-8")
    assert result.test_case_results == []
    assert _leftovers(judge_settings.judge_temp_dir) == []


@pytest.mark.skipif(os.name != "posix", reason="exec permission bits are POSIX only")
@pytest.mark.asyncio
async def test_non_executable_interpreter_falls_back(judge_settings, tmp_path):
    blocked = tmp_path / "python-blocked"
    blocked.write_text("#!/bin/sh\nexit 0\n")
    blocked.chmod(0o600)
    judge_settings.python_binaries = (str(blocked), sys.executable)
    engine = LocalExecutionEngine(judge_settings)

    result = await engine.run_submission(
        Submission(language="python", code="print('hi')", test_cases=[TestCase(expected_output="hi", marks=1)])
    )

    assert result.test_case_results[0].status == "passed"


@pytest.mark.skipif(os.name != "posix", reason="exec permission bits are POSIX only")
@pytest.mark.asyncio
async def test_non_executable_interpreter_falls_back_at_run_time(judge_settings, tmp_path, monkeypatch):
    blocked = tmp_path / "python-blocked"
    blocked.write_text("#!/bin/sh\nexit 0\n")
    blocked.chmod(0o600)
    judge_settings.python_binaries = (str(blocked), sys.executable)
    engine = LocalExecutionEngine(judge_settings)

    async def always_available(binary):
        return True

    monkeypatch.setattr(engine, "_probe", always_available)

    result = await engine.run_submission(
        Submission(language="python", code="print(input())", test_cases=[TestCase(input="one\n", expected_output="one", marks=1)])
    )

    assert result.test_case_results[0].status == "passed"


@pytest.mark.asyncio
async def test_program_printing_not_found_is_not_retried(judge_settings, monkeypatch):
    judge_settings.python_binaries = (sys.executable, "definitely-not-python-xyz")
    engine = LocalExecutionEngine(judge_settings)
    calls = []
    original = engine._execute

    async def counting_execute(command, state, test_case, time_limit):
        calls.append(command[0])
        return await original(command, state, test_case, time_limit)

    monkeypatch.setattr(engine, "_execute", counting_execute)

    result = await engine.run_submission(
        Submission(
            language="python",
            code="import sys\nprint('Item not found')\nsys.exit(1)\n",
            test_cases=[TestCase(expected_output="Item found", marks=1)],
        )
    )

    (row,) = result.test_case_results
    assert row.status == "runtime_error"
    assert row.output == "Item not found"
    assert calls == [sys.executable]


def test_sweep_keeps_artifacts_of_live_submissions(judge_settings):
    temp_dir = judge_settings.judge_temp_dir
    live = os.path.join(temp_dir, f"{ARTIFACT_PREFIX}abc.py")
    live_binary = os.path.join(temp_dir, f"{ARTIFACT_PREFIX}abc.out")
    dead = os.path.join(temp_dir, f"{ARTIFACT_PREFIX}def.py")
    for path in (live, live_binary, dead):
        with open(path, "w") as fh:
            fh.write("x")
    old = time.time() - judge_settings.judge_stale_file_age_s - 60
    for path in (live, live_binary, dead):
        os.utime(path, (old, old))

    LocalExecutionEngine(judge_settings)._sweep_stale_artifacts(frozenset({"abc"}))

    assert os.path.exists(live)
    assert os.path.exists(live_binary)
    assert not os.path.exists(dead)
