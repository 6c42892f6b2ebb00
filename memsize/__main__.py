"""Entry point for ``python -m memsize``; see :mod:`memsize.main`."""

from memsize.main import main

if __name__ == "__main__":
    raise SystemExit(main())
