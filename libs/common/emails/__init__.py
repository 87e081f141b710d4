"""
LockerDrop Email Package.

Modules:
- core: Base send_email function (SMTP)
"""
