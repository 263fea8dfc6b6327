"""Example plugin: rewrite HTML <title>

Demonstrates a simple content mutation using the transform hook.
Adds a suffix to every <title> element of built pages.
"""
import re

TITLE_RE = re.compile(r"<title>(.*?)</title>", re.IGNORECASE | re.DOTALL)

SUFFIX = " | My Web App"

def transform(file_id, code):
    # Only operate on HTML
    if not file_id.lower().endswith('.html'):
        return None
    def _repl(m):
        inner = m.group(1).strip()
        if inner.endswith(SUFFIX):
            return m.group(0)
        return f"<title>{inner}{SUFFIX}</title>"
    new_code, count = TITLE_RE.subn(_repl, code, count=1)
    if count:
        return new_code
    return None
