"""Console entrypoint for Streamline.

- `streamline` (defaults to starting the API server)
- `streamline run ...` / `streamline sweep` / `streamline import` /
  `streamline assign`
- `streamline-sweep` (one expiry sweep, for cron)

Wraps the `run_server.py` interface so runner logic lives in one place.
"""

from __future__ import annotations

import sys


def _get_version() -> str:
    try:
        from importlib.metadata import PackageNotFoundError, version

        return version("streamline-campaigns")
    except PackageNotFoundError:
        from streamline import __version__

        return __version__


def _normalize_argv(argv: list[str]) -> list[str]:
    # argv is sys.argv (including program name at [0]).
    args = argv[1:]

    if not args:
        return [argv[0], "run"]

    head = args[0]

    if head in {"server", "serve", "start"}:
        return [argv[0], "run", *args[1:]]

    # `streamline --port 8000` means the run subcommand.
    if head.startswith("-") and head not in {"-h", "--help"}:
        return [argv[0], "run", *args]

    return argv


def main() -> None:
    if any(arg in {"--version", "-V"} for arg in sys.argv[1:]):
        print(_get_version())
        return

    # `run_server` is installed as a top-level module via setup.py (py_modules).
    import run_server  # type: ignore

    sys.argv = _normalize_argv(sys.argv)
    run_server.main()


def sweep_main() -> None:
    import run_server  # type: ignore

    sys.argv = [sys.argv[0], "sweep", *sys.argv[1:]]
    run_server.main()


if __name__ == "__main__":
    main()
