import sys

from icediff.orchestrator import main

if __name__ == "__main__":
    sys.exit(main())
