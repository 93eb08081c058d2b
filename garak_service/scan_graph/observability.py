from __future__ import annotations

import os
from pathlib import Path
from typing import Callable
from typing import TypeVar

from dotenv import load_dotenv
from langsmith import traceable

T = TypeVar("T", bound=Callable)

_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"


def load_environment() -> None:
    load_dotenv(dotenv_path=_ENV_PATH, override=False)


def configure_langsmith() -> None:
    load_environment()

    api_key = os.getenv("LANGSMITH_API_KEY") or os.getenv("LANGCHAIN_API_KEY")
    if not api_key:
        return

    endpoint = os.getenv("LANGSMITH_ENDPOINT") or os.getenv("LANGCHAIN_ENDPOINT")
    project = os.getenv("LANGSMITH_PROJECT") or os.getenv("LANGCHAIN_PROJECT") or "garak-api-service"

    os.environ.setdefault("LANGSMITH_API_KEY", api_key)
    os.environ.setdefault("LANGCHAIN_API_KEY", api_key)
    if endpoint:
        os.environ.setdefault("LANGSMITH_ENDPOINT", endpoint)
        os.environ.setdefault("LANGCHAIN_ENDPOINT", endpoint)
    os.environ.setdefault("LANGSMITH_PROJECT", project)
    os.environ.setdefault("LANGCHAIN_PROJECT", project)

    os.environ.setdefault("LANGSMITH_TRACING", "true")
    os.environ.setdefault("LANGCHAIN_TRACING_V2", "true")


def traced(name: str, run_type: str = "chain") -> Callable[[T], T]:
    # Inputs are hidden because graph config carries credentials and settings objects.
    def _decorator(func: T) -> T:
        return traceable(name=name, run_type=run_type, process_inputs=_summarize_inputs)(func)  # type: ignore[return-value]

    return _decorator


def _summarize_inputs(inputs: dict) -> dict:
    state = inputs.get("state")
    if isinstance(state, dict):
        return {"scan_id": state.get("scan_id"), "phase": state.get("phase"), "status": state.get("status")}
    return {}
