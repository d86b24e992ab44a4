"""Build orchestration for the Nix SELinux policy packages."""

__version__ = "0.1.0"
