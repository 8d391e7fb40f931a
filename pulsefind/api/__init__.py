"""Litestar HTTP surface for scans."""
