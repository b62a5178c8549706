import sys

from proxmox_exporter.cli import main

sys.exit(main())
