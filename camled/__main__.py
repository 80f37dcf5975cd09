"""Allow ``python -m camled`` to launch the headless demo."""

from __future__ import annotations

import sys

from camled import run


def main() -> None:
    run(sys.argv[1:])


if __name__ == "__main__":
    main()
