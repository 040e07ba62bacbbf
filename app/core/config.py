from __future__ import annotations

import os
import tempfile
from functools import lru_cache
from dotenv import load_dotenv, find_dotenv

_env_path = find_dotenv(".env") or ".env"
load_dotenv(_env_path, override=False)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


def _env_csv(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Settings:
    """Central configuration (env driven)."""

    def __init__(self) -> None:
        # Mode selection
        on_vercel = os.getenv("VERCEL", "") == "1"
        production = "production" in (
            os.getenv("NODE_ENV", "").lower(),
            os.getenv("ENV", "").lower(),
        )
        self.use_external_judge: bool = on_vercel or production or _env_bool("USE_EXTERNAL_JUDGE")
        self.judge_api_provider: str = os.getenv("JUDGE_API_PROVIDER", "").strip().lower()
        self.local_fallback_languages: tuple[str, ...] = _env_csv("JUDGE_LOCAL_FALLBACK", "javascript")
        # Local engine
        default_temp = "/tmp" if on_vercel else os.path.join(tempfile.gettempdir(), "judge")
        self.judge_temp_dir: str = os.getenv("JUDGE_TEMP_DIR") or default_temp
        self.judge_grace_ms: int = int(os.getenv("JUDGE_GRACE_MS", "500"))
        self.judge_compile_timeout_s: float = float(os.getenv("JUDGE_COMPILE_TIMEOUT_S", "10"))
        self.judge_probe_timeout_s: float = float(os.getenv("JUDGE_PROBE_TIMEOUT_S", "1"))
        self.judge_stale_file_age_s: int = int(os.getenv("JUDGE_STALE_FILE_AGE_S", "300"))
        self.judge_max_output_bytes: int = int(os.getenv("JUDGE_MAX_OUTPUT_BYTES", str(10 * 1024 * 1024)))
        self.python_binaries: tuple[str, ...] = _env_csv("JUDGE_PYTHON_BINARIES", "python3,python")
        self.node_binaries: tuple[str, ...] = _env_csv("JUDGE_NODE_BINARIES", "node,nodejs")
        # Piston (free, no key)
        self.piston_enabled: bool = _env_bool("PISTON_ENABLED", "true")
        self.piston_api_url: str = os.getenv("PISTON_API_URL", "https://emkc.org/api/v2/piston").rstrip("/")
        self.piston_max_run_timeout_ms: int = int(os.getenv("PISTON_MAX_RUN_TIMEOUT_MS", "3000"))
        # Judge0 / RapidAPI
        self.judge0_api_key: str = os.getenv("JUDGE0_API_KEY") or os.getenv("JUDGE0_KEY", "")
        self.judge0_host: str = os.getenv("JUDGE0_HOST", "judge0-ce.p.rapidapi.com")
        self.judge0_api_url: str = os.getenv("JUDGE0_API_URL") or os.getenv("JUDGE0_BASE_URL", "")
        self.remote_timeout_s: float = float(os.getenv("JUDGE_REMOTE_TIMEOUT_S", "30"))
        # App meta
        self.app_name: str = "Code Judge"
        self.debug: bool = os.getenv("DEBUG", "False").lower() == "true"
        self.allow_origins: tuple[str, ...] = _env_csv("ALLOW_ORIGINS", "http://localhost:5173,http://localhost:3000")
        self.host: str = os.getenv("HOST", "0.0.0.0" if production else "127.0.0.1")
        self.port: int = int(os.getenv("PORT", "8000"))

    @property
    def judge0_configured(self) -> bool:
        return bool(self.judge0_api_key or self.judge0_api_url)

    @property
    def judge0_base_url(self) -> str:
        if self.judge0_api_url:
            return self.judge0_api_url
        return f"https://{self.judge0_host}" if self.judge0_api_key else ""


@lru_cache()
def get_settings() -> Settings:
    return Settings()
