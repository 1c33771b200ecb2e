import sys
import os

# Ensure the fluxmarks package is importable when run from a checkout
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from fluxmarks.gui.side_panel import main

if __name__ == "__main__":
    sys.exit(main())
