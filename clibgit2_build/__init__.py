"""
Clibgit2 Build System
Builds libgit2 with OpenSSL and libssh2 as a static XCFramework
Supports iOS, the iOS simulator, Mac Catalyst and macOS
"""

__version__ = "1.8.4"

from .main import BuildSystem

__all__ = ["BuildSystem", "__version__"]
