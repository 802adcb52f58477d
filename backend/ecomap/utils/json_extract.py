import json
import re


def strip_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one."""
    content = re.sub(r"^```(?:json)?\s*", "", text.strip())
    return re.sub(r"\s*```$", "", content.strip())


def extract_json(text: str) -> dict:
    """
    Extract the first JSON object from LLM output.
    Raises ValueError if no JSON object can be parsed.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValueError("empty model output")

    text = strip_fences(text)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Try to extract JSON block
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if not match:
            raise ValueError("no JSON object found in model output")
        data = json.loads(match.group(0))

    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data
