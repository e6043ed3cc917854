"""Disk image storage primitives: partitioning, loop mapping, mounting."""
