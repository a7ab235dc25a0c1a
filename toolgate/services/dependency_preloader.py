# -*- coding: utf-8 -*-
"""Location: ./toolgate/services/dependency_preloader.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Dependency preloading for the embedded interpreter.

Before a snippet runs in-process, its imports are collected statically, the
modules already importable (built-in, standard library, installed) are
subtracted, and exactly the remaining packages are installed with pip.

Examples:
    >>> find_imports("import os\\nimport numpy as np\\nfrom pandas.io import json\\nfrom . import x")
    ['numpy', 'os', 'pandas']
    >>> find_imports("def broken(:")
    []
"""

# Standard
import ast
import asyncio
import importlib
import pkgutil
import sys
from typing import Dict, FrozenSet, List, Optional

# First-Party
from toolgate.config import settings
from toolgate.runtimes.base import PreloadFailure
from toolgate.services.logging_service import LoggingService

logger = LoggingService().get_logger(__name__)

# Import names whose distribution on the package index is named differently
IMPORT_TO_PACKAGE_MAP: Dict[str, str] = {
    "PIL": "pillow",
    "bs4": "beautifulsoup4",
    "cv2": "opencv-python",
    "dateutil": "python-dateutil",
    "docx": "python-docx",
    "dotenv": "python-dotenv",
    "jwt": "PyJWT",
    "serial": "pyserial",
    "skimage": "scikit-image",
    "sklearn": "scikit-learn",
    "yaml": "pyyaml",
}


def find_imports(code: str) -> List[str]:
    """Return the sorted top-level module names imported by ``code``.

    Relative imports are ignored. Code that does not parse yields no imports,
    leaving the syntax error to be reported when the snippet runs.

    Args:
        code: Python source.

    Returns:
        List[str]: Sorted, de-duplicated module names.
    """
    try:
        tree = ast.parse(code)
    except SyntaxError:
        return []

    names = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                names.add(alias.name.split(".", 1)[0])
        elif isinstance(node, ast.ImportFrom):
            if node.level == 0 and node.module:
                names.add(node.module.split(".", 1)[0])
    return sorted(names)


def available_modules() -> FrozenSet[str]:
    """Return every module name importable without installing anything.

    Returns:
        FrozenSet[str]: Built-in, standard library and installed top-level modules.

    Examples:
        >>> modules = available_modules()
        >>> "sys" in modules and "json" in modules
        True
    """
    installed = {module.name for module in pkgutil.iter_modules()}
    return frozenset(installed | set(sys.builtin_module_names) | set(sys.stdlib_module_names))


class DependencyPreloader:
    """Install the missing packages of a snippet before it runs."""

    def __init__(self, python: Optional[str] = None, enabled: Optional[bool] = None, timeout: Optional[float] = None) -> None:
        """Configure the preloader.

        Args:
            python: Interpreter whose environment receives the packages.
            enabled: Overrides ``settings.embedded_auto_install``.
            timeout: Seconds allowed for one pip invocation.
        """
        self._python = python or sys.executable
        self._enabled = settings.embedded_auto_install if enabled is None else enabled
        self._timeout = timeout if timeout is not None else settings.preload_timeout_seconds
        self._lock = asyncio.Lock()

    def missing_packages(self, code: str) -> List[str]:
        """Return the distributions that must be installed for ``code``.

        Args:
            code: Python source.

        Returns:
            List[str]: Distribution names, sorted by import name.
        """
        available = available_modules()
        return [IMPORT_TO_PACKAGE_MAP.get(name, name) for name in find_imports(code) if name not in available]

    async def preload(self, code: str) -> List[str]:
        """Install the packages ``code`` needs.

        Args:
            code: Python source.

        Returns:
            List[str]: Distributions that were installed.

        Raises:
            PreloadFailure: If pip fails, times out, or cannot be started.
        """
        if not self._enabled:
            return []

        # Serialised so two snippets never race on the same site-packages
        async with self._lock:
            packages = self.missing_packages(code)
            if not packages:
                return []

            logger.info(f"Installing packages for embedded execution: {packages}")
            try:
                proc = await asyncio.create_subprocess_exec(
                    self._python,
                    "-m",
                    "pip",
                    "install",
                    "--quiet",
                    *packages,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
            except OSError as exc:
                raise PreloadFailure(f"Failed to start pip: {exc}") from exc

            try:
                output, _ = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                proc.kill()
                await proc.wait()
                raise PreloadFailure(f"Timeout (>{self._timeout}s) while installing {', '.join(packages)}") from exc

            if proc.returncode != 0:
                details = output.decode("utf-8", errors="replace").strip() if output else "No error details"
                raise PreloadFailure(f"Failed to install {', '.join(packages)}\n{details}")

            importlib.invalidate_caches()
            logger.info(f"Installed packages: {packages}")
            return packages
