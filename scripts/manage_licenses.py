"""Run the license reconciliation CLI from a source checkout.

    python scripts/manage_licenses.py reconcile --dry-run

Installed copies use the ``manage-licenses`` console script instead.
"""
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from license_manager.cli import main

if __name__ == "__main__":
    sys.exit(main())
