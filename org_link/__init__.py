"""
org-link - Link directory users to memberships of a hosted source-control organisation.

This package invites and removes organisation members and records each
member's organisation username in an attribute of their directory account.
"""

__version__ = "1.0.0"
__author__ = "org-link maintainers"
