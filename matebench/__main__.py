import sys

from matebench.cli import main

if __name__ == "__main__":
    sys.exit(main())
