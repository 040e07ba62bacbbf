"""Run a hello-world submission in every supported language.

Uses whichever mode the environment selects (local toolchains by default,
the external judge when USE_EXTERNAL_JUDGE / VERCEL / production is set),
so it can be pointed at a deployment config before shipping.

Usage:
    python scripts/smoke_languages.py [language ...]
"""
from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Dict, List

# Ensure project root on PYTHONPATH when executed as standalone script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.features.execution.schemas import TestCase, TestCaseStatus
from app.features.execution.service import judge_service, run_submission

EXPECTED = "Hello, World!"

HELLO_WORLD: Dict[str, str] = {
    "javascript": "console.log('Hello, World!');",
    "python": "print('Hello, World!')",
    "c": '#include <stdio.h>\nint main(void) { printf("Hello, World!\\n"); return 0; }\n',
    "cpp": '#include <iostream>\nint main() { std::cout << "Hello, World!" << std::endl; return 0; }\n',
    "java": (
        "public class Main {\n"
        "    public static void main(String[] args) {\n"
        '        System.out.println("Hello, World!");\n'
        "    }\n"
        "}\n"
    ),
}


async def _check(language: str) -> bool:
    print("=" * 60)
    print(f"Testing {language.upper()}...")
    result = await run_submission(
        language=language,
        code=HELLO_WORLD[language],
        test_cases=[TestCase(expected_output=EXPECTED, marks=10)],
        time_limit=5000,
    )
    print(json.dumps(result.model_dump(by_alias=True), indent=2))
    if result.compilation_error:
        print(f"FAILED: compilation error - {result.compilation_error}")
        return False
    failed = [r for r in result.test_case_results if r.status != TestCaseStatus.PASSED.value]
    if failed:
        for idx, r in enumerate(failed, 1):
            print(f"  Test {idx}: {r.status} - output={r.output!r} error={r.error!r}")
        return False
    print("SUCCESS: all test cases passed")
    return True


async def main(languages: List[str]) -> int:
    print(f"Mode: {judge_service.mode}")
    print(f"USE_EXTERNAL_JUDGE={os.getenv('USE_EXTERNAL_JUDGE', 'false')} VERCEL={os.getenv('VERCEL', '')}")
    outcomes = {}
    for language in languages:
        outcomes[language] = await _check(language)

    print("=" * 60)
    for language, ok in outcomes.items():
        print(f"{'PASS' if ok else 'FAIL'}  {language}")
    return 0 if all(outcomes.values()) else 1


if __name__ == "__main__":
    selected = sys.argv[1:] or list(HELLO_WORLD)
    unknown = [lang for lang in selected if lang not in HELLO_WORLD]
    if unknown:
        raise SystemExit(f"No sample program for: {', '.join(unknown)}")
    raise SystemExit(asyncio.run(main(selected)))
