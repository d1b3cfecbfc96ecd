"""cast installer: verified SaltStack distro installs.

Core design goals:
- Resolve a distro alias or owner/repo to one release
- Verify every artifact before anything is extracted
- Run salt-call locally and classify the outcome
- Remember the installed mode per distro
"""

__version__ = "0.1.0"
