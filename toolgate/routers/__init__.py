# -*- coding: utf-8 -*-
"""Location: ./toolgate/routers/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

HTTP routers.
"""
