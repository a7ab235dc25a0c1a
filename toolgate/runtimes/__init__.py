# -*- coding: utf-8 -*-
"""Location: ./toolgate/runtimes/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Code execution backends.
"""
