import os
from typing import Optional

from openai import OpenAI


def resolve_api_key(*candidates: Optional[str]) -> Optional[str]:
    """First non-blank key among the candidates, then the OPENAI_API_KEY env var."""
    for candidate in candidates:
        if candidate and str(candidate).strip():
            return str(candidate).strip()
    env_key = os.environ.get("OPENAI_API_KEY")
    return env_key.strip() if env_key and env_key.strip() else None


def get_openai_client(api_key: Optional[str] = None) -> OpenAI:
    api_key = resolve_api_key(api_key)
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is not set")
    return OpenAI(api_key=api_key)
