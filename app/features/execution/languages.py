"""Language toolchain registry.

Closed enumerations for languages and remote services. Every lookup that can
miss returns ``None`` so callers decide how to report an unsupported
combination.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from app.features.execution.errors import UnsupportedLanguageError


class Language(str, Enum):
    JAVASCRIPT = "javascript"
    PYTHON = "python"
    C = "c"
    CPP = "cpp"
    JAVA = "java"


_ALIASES: Dict[str, Language] = {
    "javascript": Language.JAVASCRIPT,
    "js": Language.JAVASCRIPT,
    "node": Language.JAVASCRIPT,
    "python": Language.PYTHON,
    "py": Language.PYTHON,
    "c": Language.C,
    "cpp": Language.CPP,
    "c++": Language.CPP,
    "java": Language.JAVA,
}


def resolve_language(name: Optional[str]) -> Optional[Language]:
    if not name:
        return None
    return _ALIASES.get(str(name).strip().lower())


def require_language(name: Optional[str]) -> Language:
    lang = resolve_language(name)
    if lang is None:
        raise UnsupportedLanguageError(str(name))
    return lang


def aliases_for(language: Language) -> List[str]:
    return [alias for alias, lang in _ALIASES.items() if lang is language]


# ---------------------------------------------------------------------------
# Local toolchains
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LocalRecipe:
    extension: str
    interpreters: Tuple[str, ...] = ()
    compiler: Optional[str] = None
    compile_flags: Tuple[str, ...] = ()
    missing_toolchain_hint: str = ""

    @property
    def compiled(self) -> bool:
        return self.compiler is not None


LOCAL_RECIPES: Dict[Language, LocalRecipe] = {
    Language.JAVASCRIPT: LocalRecipe(extension="js", interpreters=("node", "nodejs")),
    Language.PYTHON: LocalRecipe(extension="py", interpreters=("python3", "python")),
    Language.C: LocalRecipe(
        extension="c",
        compiler="gcc",
        compile_flags=("-O2",),
        missing_toolchain_hint=(
            "gcc not found. Please install GCC (e.g. MinGW/MSYS2 on Windows or "
            "build-essential on Linux) and ensure it is on your PATH."
        ),
    ),
    Language.CPP: LocalRecipe(
        extension="cpp",
        compiler="g++",
        compile_flags=("-O2", "-std=c++17"),
        missing_toolchain_hint=(
            "g++ not found. Please install GCC (g++) (e.g. MinGW/MSYS2 on Windows or "
            "g++/build-essential on Linux) and ensure it is on your PATH."
        ),
    ),
    Language.JAVA: LocalRecipe(
        extension="java",
        interpreters=("java",),
        compiler="javac",
        missing_toolchain_hint=(
            "javac (JDK) not found. Please install the Java Development Kit and "
            "ensure `javac`/`java` are on your PATH."
        ),
    ),
}

_missing_recipes = set(Language) - set(LOCAL_RECIPES)
if _missing_recipes:
    raise RuntimeError(f"No local recipe for: {sorted(l.value for l in _missing_recipes)}")


# ---------------------------------------------------------------------------
# Remote services
# ---------------------------------------------------------------------------

class ServiceTarget(str, Enum):
    PISTON = "piston"
    JUDGE0 = "judge0"

    @property
    def requires_credential(self) -> bool:
        return self is ServiceTarget.JUDGE0


# Free services first.
SERVICE_PRIORITY: Tuple[ServiceTarget, ...] = (ServiceTarget.PISTON, ServiceTarget.JUDGE0)


@dataclass(frozen=True)
class PistonRuntime:
    language: str
    version: str
    filename: str


PISTON_RUNTIMES: Dict[Language, PistonRuntime] = {
    Language.JAVASCRIPT: PistonRuntime("javascript", "18.15.0", "main.js"),
    Language.PYTHON: PistonRuntime("python", "3.10.0", "main.py"),
    Language.JAVA: PistonRuntime("java", "15.0.2", "Main.java"),
    Language.C: PistonRuntime("c", "10.2.0", "main.c"),
    Language.CPP: PistonRuntime("c++", "10.2.0", "main.cpp"),
}

# Judge0 CE language ids
JUDGE0_LANGUAGE_IDS: Dict[Language, int] = {
    Language.JAVASCRIPT: 63,  # Node.js 12.14.0
    Language.PYTHON: 71,      # Python 3.8.1
    Language.JAVA: 62,        # OpenJDK 13.0.1
    Language.C: 50,           # GCC 9.2.0
    Language.CPP: 54,         # GCC 9.2.0
}


def service_language(target: ServiceTarget, language: Language) -> Union[PistonRuntime, int, None]:
    """Return the service-specific identifier for ``language`` or ``None`` if unsupported."""
    if target is ServiceTarget.PISTON:
        return PISTON_RUNTIMES.get(language)
    if target is ServiceTarget.JUDGE0:
        return JUDGE0_LANGUAGE_IDS.get(language)
    raise ValueError(f"Unknown service target: {target!r}")


def service_supports(target: ServiceTarget, language: Language) -> bool:
    return service_language(target, language) is not None
