# -*- coding: utf-8 -*-
"""Location: ./toolgate/cache/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Session registry.
"""
