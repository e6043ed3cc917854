"""Assembly of bootable Ubuntu disk images.

Partitions a raw backing file, maps the partitions to loop devices,
mounts them, unpacks the OS payload and installs GRUB or U-Boot.
"""

from .__version__ import __version__
