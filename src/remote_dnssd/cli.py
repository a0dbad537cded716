#!/usr/bin/env python3
"""remote-dnssd CLI - Thin wrapper for cli_main"""

# ruff: noqa: E402
# ========================================
# 重要: .env の読み込みは最初に行う必要がある
# DiscoveryConfig がインスタンス化時に環境変数を参照するため
# ========================================
from .utils.env_loader import load_dotenv_early

load_dotenv_early()

from .cli_main import app, main

__all__ = ["app", "main"]
