import sys

from .configure import main

if __name__ == "__main__":
    sys.exit(main())
