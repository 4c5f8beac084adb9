# Make `import mgm_proxy` resolve to this checkout when pytest runs from the
# project root without an editable install.
import os
import sys

PROJECT_ROOT = os.path.dirname(__file__)

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)
