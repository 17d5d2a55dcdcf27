import re

_TAG_PATTERN = re.compile(r"<[^<>]*>")


def strip_markup(text: str) -> str:
    """Remove HTML/XML tags from untrusted text.

    Tags are removed until none remain, so nested fragments such as
    ``<<b>script>`` cannot reassemble into a tag and a second pass never
    changes the result.
    """
    previous = None
    while previous != text:
        previous = text
        text = _TAG_PATTERN.sub("", text)
    return text


def redact_pii(message: str) -> str:
    """Redact personally identifiable information from log messages.

    Masks emails, IPv4 addresses, JWTs and password assignments before they
    reach a log sink.
    """
    if not isinstance(message, str):
        return str(message)

    # Emails: user@example.com -> u***@example.com
    message = re.sub(
        r"[\w.+-]+@[\w.-]+\.\w+",
        lambda m: m.group()[0] + "***@" + m.group().split("@")[1],
        message,
    )

    # IPs (IPv4): 192.168.1.100 -> 192.168.1.***
    message = re.sub(
        r"\b(\d{1,3}\.\d{1,3}\.\d{1,3}\.)\d{1,3}\b", r"\1***", message
    )

    # JWT tokens: eyJ... -> [JWT_REDACTED]
    message = re.sub(
        r"eyJ[A-Za-z0-9_-]+\.eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+",
        "[JWT_REDACTED]",
        message,
    )

    # Password values in common patterns
    message = re.sub(
        r'(password|passwd|pwd|secret)["\']?\s*[:=]\s*["\']?[^"\'&\s]+',
        r"\1=[REDACTED]",
        message,
        flags=re.IGNORECASE,
    )

    return message
