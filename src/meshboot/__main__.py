# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from meshboot.cli.app import app

if __name__ == "__main__":
    app()
