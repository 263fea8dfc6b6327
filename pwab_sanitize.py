"""Production rewrite for built HTML pages.

Pages captured from a running dev server carry two kinds of dev-only markup:
the module script that boots the live-reload client, and absolute URLs
pointing at the dev server origin. Both are removed here, in that order:

    <script type="module">import "http://localhost:5173/@vite/client"</script>   -> removed
    <link href="http://localhost:5173/assets/app.css">                          -> href="/assets/app.css"

The transform is text-only (no HTML parsing, no I/O) and idempotent.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import List, Pattern, Tuple, Union

DEV_ORIGIN = 'http://localhost:5173'
DEV_CLIENT_PATH = '/@vite/client'
HTML_EXT = '.html'

__all__ = ['DEV_ORIGIN', 'DEV_CLIENT_PATH', 'SanitizeRule', 'dev_client_pattern', 'default_rules',
           'apply_rules', 'sanitize_artifact', 'sanitize_stats']


@dataclass(frozen=True)
class SanitizeRule:
    pattern: Union[Pattern[str], str]
    replacement: str = ''
    count: int = 0  # 0 = every occurrence

    def apply(self, text: str) -> Tuple[str, int]:
        if isinstance(self.pattern, str):
            return _strip_literal(text, self.pattern, self.replacement)
        return self.pattern.subn(self.replacement, text, count=self.count)


def _strip_literal(text: str, literal: str, replacement: str) -> Tuple[str, int]:
    if not literal:
        return text, 0
    total = 0
    if replacement == '':
        # removal can splice two fragments into a fresh occurrence
        while literal in text:
            total += text.count(literal)
            text = text.replace(literal, '')
        return text, total
    total = text.count(literal)
    return text.replace(literal, replacement), total


def dev_client_pattern(dev_origin: str = DEV_ORIGIN) -> Pattern[str]:
    return re.compile(
        r'<script type="module">\s*import ["\']' + re.escape(dev_origin + DEV_CLIENT_PATH) + r'["\'][\s\S]*?</script>'
    )


def default_rules(dev_origin: str = DEV_ORIGIN) -> List[SanitizeRule]:
    return [
        SanitizeRule(dev_client_pattern(dev_origin), '', count=1),
        SanitizeRule(dev_origin, ''),
    ]


def apply_rules(content: str, rules: List[SanitizeRule]) -> Tuple[str, List[int]]:
    counts = []
    for rule in rules:
        content, n = rule.apply(content)
        counts.append(n)
    return content, counts


def sanitize_stats(file_id: str, content: str, dev_origin: str = DEV_ORIGIN) -> Tuple[str, int, int]:
    """Return (new_content, dev_blocks_removed, origin_occurrences_removed)."""
    if not file_id.endswith(HTML_EXT):
        return content, 0, 0
    content, (blocks, origins) = apply_rules(content, default_rules(dev_origin))
    return content, blocks, origins


def sanitize_artifact(file_id: str, content: str, dev_origin: str = DEV_ORIGIN) -> str:
    return sanitize_stats(file_id, content, dev_origin)[0]
