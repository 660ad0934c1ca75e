# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

"""Two-phase, reboot-spanning bootstrap for mesh-network Docker hosts."""

__version__ = "0.1.0"
