# -*- coding: utf-8 -*-
"""Location: ./toolgate/utils/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Stream and parsing utilities.
"""
