"""Allow running as ``python -m workflow_gate``."""

from .cli import main

if __name__ == "__main__":
    main()
