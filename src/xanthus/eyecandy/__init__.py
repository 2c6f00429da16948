# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>

#
# SPDX-License-Identifier: MIT

"""Rich-based table rendering for the Xanthus CLI."""

from xanthus.eyecandy.table_renderer import TableRenderer
from xanthus.eyecandy.tables import XanthusTables

__all__ = ["TableRenderer", "XanthusTables"]
