import os, sys, re

BASE = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if BASE not in sys.path:
    sys.path.insert(0, BASE)

from pwab_sanitize import sanitize_artifact, sanitize_stats, default_rules, apply_rules, DEV_ORIGIN

DEV_PAGE = '''<!DOCTYPE html>
<html>
<head>
  <script type="module">
    import "http://localhost:5173/@vite/client"
    window.process = { env: {} };
  </script>
  <link rel="stylesheet" href="http://localhost:5173/assets/index.css" />
</head>
<body>
  <img src="http://localhost:5173/images/logo/logo_192x192.png">
  <script type="module" src="http://localhost:5173/ts/main.ts"></script>
</body>
</html>
'''


def test_dev_bootstrap_and_origin_removed():
    out = sanitize_artifact('index.html', DEV_PAGE)
    assert '@vite/client' not in out
    assert 'localhost:5173' not in out
    assert 'window.process' not in out
    assert 'href="/assets/index.css"' in out
    assert 'src="/images/logo/logo_192x192.png"' in out
    # the application's own module script stays
    assert '<script type="module" src="/ts/main.ts"></script>' in out


def test_sanitize_is_idempotent():
    once = sanitize_artifact('blog/post/index.html', DEV_PAGE)
    assert sanitize_artifact('blog/post/index.html', once) == once


def test_non_html_artifacts_pass_through():
    js = 'fetch("http://localhost:5173/api")'
    assert sanitize_artifact('assets/main.js', js) == js
    assert sanitize_artifact('index.html.map', DEV_PAGE) == DEV_PAGE


def test_page_without_block_only_loses_origin():
    page = '<html><head><link href="http://localhost:5173/a.css"></head><body>ok</body></html>'
    assert sanitize_artifact('a.html', page) == page.replace(DEV_ORIGIN, '')
    plain = '<html><body>production page</body></html>'
    assert sanitize_artifact('a.html', plain) == plain


def test_only_first_bootstrap_block_removed():
    block = '<script type="module">import "http://localhost:5173/@vite/client"</script>'
    out = sanitize_artifact('a.html', block + '<p>x</p>' + block)
    assert out.count('<script type="module">') == 1
    assert out.count('/@vite/client') == 1
    assert 'localhost' not in out


def test_spliced_origin_is_removed_until_stable():
    content = 'url(http://localhohttp://localhost:5173st:5173/x.png)'
    out = sanitize_artifact('a.html', content)
    assert out == 'url(/x.png)'
    assert sanitize_artifact('a.html', out) == out


def test_stats_count_blocks_and_urls():
    _, blocks, urls = sanitize_stats('index.html', DEV_PAGE)
    assert blocks == 1
    assert urls == 3


def test_custom_dev_origin():
    origin = 'http://127.0.0.1:3000'
    page = f'<script type="module">\n import "{origin}/@vite/client";\n</script><a href="{origin}/docs/">d</a>'
    out = sanitize_artifact('a.html', page, dev_origin=origin)
    assert out == '<a href="/docs/">d</a>'


def test_rules_run_in_fixed_order():
    rules = default_rules()
    assert isinstance(rules[0].pattern, re.Pattern) and rules[0].count == 1
    assert rules[1].pattern == DEV_ORIGIN
    out, counts = apply_rules(DEV_PAGE, rules)
    assert counts == [1, 3]
    assert out == sanitize_artifact('x.html', DEV_PAGE)
