"""Allow ``python -m ols_guard`` invocation."""
from __future__ import annotations

from .olsctl import main

if __name__ == "__main__":
    raise SystemExit(main())
