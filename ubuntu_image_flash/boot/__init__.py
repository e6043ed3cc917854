"""Bootloader installation: boot assets, GRUB and U-Boot."""
