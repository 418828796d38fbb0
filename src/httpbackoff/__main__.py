"""Module entrypoint for `python -m httpbackoff`."""

from httpbackoff.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
