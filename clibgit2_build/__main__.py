"""Allows running the build system with python -m clibgit2_build"""
import sys

from .main import main

sys.exit(main())
