"""Run the go.mod cross-linker hooks from a build script."""

from __future__ import annotations

from gomod_linker.__main__ import main


if __name__ == "__main__":
    raise SystemExit(main())
