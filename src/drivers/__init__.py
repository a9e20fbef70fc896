"""Layer drivers.

This module defines the mount-only driver contract and a directory driver.
It adds diff, apply, and sizing on top of drivers that cannot diff natively.
"""
