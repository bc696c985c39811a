"""Live installer: provision an OS image onto a target disk.

Core design goals:
- Fail before touching the disk whenever a precondition can be checked
- One native package manager per target, chosen from its build profile
- Firmware boot entries owned and recognised by label
- Centralized logging
"""

__all__ = []
