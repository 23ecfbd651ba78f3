"""
specsheet — built-in check families.

Purpose
- Importing this package registers every built-in family with
  ``DEFAULT_CHECK_REGISTRY``.
"""

from specsheet.checks.families.commands import CommandCheck, TapCheck
from specsheet.checks.families.files import FilesystemCheck, HashCheck
from specsheet.checks.families.network import DnsCheck, HttpCheck, PingCheck, TcpCheck, UdpCheck
from specsheet.checks.families.packages import (
    AptCheck,
    GemCheck,
    HomebrewCaskCheck,
    HomebrewCheck,
    HomebrewTapCheck,
    NpmCheck,
    PackageListCheck,
)
from specsheet.checks.families.system import (
    DefaultsCheck,
    GroupCheck,
    SystemdCheck,
    UfwCheck,
    UserCheck,
)

__all__ = [
    "AptCheck",
    "CommandCheck",
    "DefaultsCheck",
    "DnsCheck",
    "FilesystemCheck",
    "GemCheck",
    "GroupCheck",
    "HashCheck",
    "HomebrewCaskCheck",
    "HomebrewCheck",
    "HomebrewTapCheck",
    "HttpCheck",
    "NpmCheck",
    "PackageListCheck",
    "PingCheck",
    "SystemdCheck",
    "TapCheck",
    "TcpCheck",
    "UdpCheck",
    "UfwCheck",
    "UserCheck",
]
