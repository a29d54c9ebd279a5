import json
import os
import re

from backend.ai_client import get_openai_client

_FENCE_RE = re.compile(r"^```(?:json)?\s*(?P<body>.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class AIServiceError(RuntimeError):
    """The chat completion could not be obtained (config, network, auth, quota)."""


def parse_json_object(response_text):
    """Parse a JSON object from model output, tolerating code fences and wrapper text."""
    if not response_text:
        return None
    text = response_text.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group("body")
    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    # Scan for the first balanced {...} that decodes, skipping braces inside strings.
    for match in re.finditer(r"\{", text):
        start = match.start()
        depth = 0
        in_string = False
        escape = False
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escape:
                    escape = False
                elif ch == "\\":
                    escape = True
                elif ch == '"':
                    in_string = False
                continue

            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    try:
                        candidate = json.loads(text[start:idx + 1])
                    except json.JSONDecodeError:
                        break
                    if isinstance(candidate, dict):
                        return candidate
                    break
    return None


def call_chat_text(
    system_prompt,
    user_content,
    *,
    api_key=None,
    model=None,
    max_tokens=1000,
    temperature=0.5,
    logger=None,
):
    """
    Single chat completion; returns the stripped content ('' when empty).

    Raises AIServiceError when the call cannot complete. Generation is not
    retried: a second sample may disagree with the first.
    """
    try:
        client = get_openai_client(api_key)
        response = client.chat.completions.create(
            model=model or os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except Exception as exc:
        if logger:
            logger.warning("OpenAI API error: %s", exc)
        raise AIServiceError(str(exc)) from exc

    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    return (choices[0].message.content or "").strip()
