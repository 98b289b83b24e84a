"""The classic greeting, as a library call and as a command."""

from __future__ import annotations

import argparse
import sys

GREETING = "Hello SLAM"


def print_hello() -> str:
    """Write the library greeting to standard output and return it."""
    line = f"{GREETING}\n"
    sys.stdout.write(line)
    sys.stdout.flush()
    return GREETING


def main(argv: list[str] | None = None) -> int:
    """Print the greeting of the stand-alone program."""
    parser = argparse.ArgumentParser(prog="hello-slam", description="Print a greeting.")
    parser.parse_args(argv)
    print(f"{GREETING}!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())