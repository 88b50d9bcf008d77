# AEGIS Governance
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of AEGIS Governance.
#
# AEGIS Governance is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""AEGIS Governance -- policy binding, hot-reload and signed proofs for governed agents."""

__version__ = "1.0.0"
