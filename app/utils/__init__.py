from typing import Optional

REDACT_HEAD = 12
REDACT_TAIL = 4


def redact_credential(token: Optional[str]) -> str:
    """Keep only the head and tail of a credential for log output."""
    if not token:
        return "<empty>"
    if len(token) <= REDACT_HEAD + REDACT_TAIL:
        return "*" * len(token)
    return f"{token[:REDACT_HEAD]}...{token[-REDACT_TAIL:]}"


def mask_token(text: str, token: Optional[str]) -> str:
    return text.replace(token, redact_credential(token)) if token else text
