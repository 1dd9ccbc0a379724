"""halosync: HaloPSA directory sync into a local CRM record store."""

__version__ = "0.1.0"
