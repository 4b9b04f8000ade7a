"""Hyperliquid funding-rate arbitrage strategy engine."""
