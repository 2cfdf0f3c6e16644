"""claude-supervisor entry point.

Supports: python -m claude_supervisor
"""

from .app import main

if __name__ == "__main__":
    main()
