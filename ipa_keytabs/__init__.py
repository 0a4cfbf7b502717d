"""Create FreeIPA Kerberos principals from an Ambari CSV, export and distribute their keytabs."""

__version__ = "0.3.0"
