import re


_SCRIPT_BLOCK = re.compile(r'<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>', re.IGNORECASE)
_HTML_TAG = re.compile(r'<[^>]+>')
_JAVASCRIPT_PROTOCOL = re.compile(r'javascript:', re.IGNORECASE)
_EVENT_HANDLER = re.compile(r'on\w+\s*=', re.IGNORECASE)


def sanitize_text(value: str) -> str:
    """Strip markup and script vectors from customer-supplied text."""
    cleaned = _SCRIPT_BLOCK.sub('', value)
    cleaned = _HTML_TAG.sub('', cleaned)
    cleaned = _JAVASCRIPT_PROTOCOL.sub('', cleaned)
    cleaned = _EVENT_HANDLER.sub('', cleaned)
    return cleaned.strip()


def display_name(full_name: str) -> str:
    """Shorten ``Jane Doe`` to ``Jane D.`` for public slot listings."""
    parts = full_name.split()
    if not parts:
        return ''
    if len(parts) == 1:
        return parts[0]
    return f'{parts[0]} {parts[-1][0].upper()}.'
