"""Configuration helpers for Xanthus."""

from __future__ import annotations

from xanthus.config.store import ConfigStore, Settings, load_config, save_config  # re-export

__all__ = [
    "ConfigStore",
    "Settings",
    "load_config",
    "save_config",
]

# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
