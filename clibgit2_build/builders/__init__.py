"""
Builder components for different build systems
"""

from .base_builder import BaseBuilder, install_from_build_tree
from .cmake_builder import CMakeBuilder
from .openssl_builder import OpenSSLBuilder

BUILDER_MAP = {
    "cmake": CMakeBuilder,
    "configure": OpenSSLBuilder,  # OpenSSL uses special Configure script
}

__all__ = [
    "BaseBuilder",
    "CMakeBuilder",
    "OpenSSLBuilder",
    "BUILDER_MAP",
    "install_from_build_tree",
]
