"""pwab entrypoint (minimal dispatcher only).

Core implementation lives in:
  * pwab_core.py      - headless CLI + build pipeline
  * pwab_entries.py   - entry discovery / aliasing
  * pwab_sanitize.py  - dev markup removal for built pages
  * pwab_pwa.py       - web app manifest + service worker generation
  * pwab_update.py    - service worker update prompt model

For programmatic use, import needed symbols directly from pwab_core.
"""
from __future__ import annotations

import sys
from pwab_core import headless_main


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    # 'build' is accepted as an optional leading verb
    if args and args[0] == 'build':
        args = args[1:]
    return headless_main(args)


if __name__ == '__main__':  # pragma: no cover
    raise SystemExit(main())

# End of dispatcher file.
