import re

# --- PII Regex Patterns ---
# Applied to every text field before it leaves the process for the
# completion service.
PII_PATTERNS = [
    # Email Addresses (e.g. user@company.com)
    (r'[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+', '<EMAIL_REDACTED>'),

    # IPv4 Addresses (e.g. 192.168.1.1) - avoiding version numbers like 1.2.3
    (r'\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}\b', '<IP_REDACTED>'),

    # Social Security Numbers (US)
    (r'\b\d{3}-\d{2}-\d{4}\b', '<SSN_REDACTED>'),

    # API Keys / Tokens (Generic high-entropy strings)
    # Looks for "key", "token", "secret" followed by 32+ chars
    (r'(?i)(api_key|access_token|secret|password)[\"\']?\s*[:=]\s*[\"\']?([a-zA-Z0-9\-_]{32,})[\"\']?', r'\1=<KEY_REDACTED>'),

    # AWS Access Key ID
    (r'AKIA[0-9A-Z]{16}', '<AWS_ACCESS_KEY_REDACTED>'),

    # GitHub tokens
    (r'\bgh[pousr]_[A-Za-z0-9]{36,}\b', '<GITHUB_TOKEN_REDACTED>'),

    # Authorization Headers (Bearer tokens)
    (r'(Bearer\s+)([a-zA-Z0-9\-_.]+)', r'\1<TOKEN_REDACTED>'),
]

_COMPILED = [(re.compile(pattern), replacement) for pattern, replacement in PII_PATTERNS]


def redact_text(text: str) -> str:
    """
    Applies all PII regex patterns to a string.
    """
    if not text:
        return ""

    redacted_text = text
    for pattern, replacement in _COMPILED:
        redacted_text = pattern.sub(replacement, redacted_text)

    return redacted_text
