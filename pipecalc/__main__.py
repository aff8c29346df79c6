# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Allow ``python -m pipecalc``."""

from pipecalc.cli import app

app()
