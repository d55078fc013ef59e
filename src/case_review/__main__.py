"""Entry point for ``python -m case_review``."""

from .cli import run

if __name__ == "__main__":
    run()
