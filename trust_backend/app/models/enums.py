"""
User roles enumeration.

Roles carried in the externally issued access token.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Company administrator, full access
        ACCOUNTANT: Operates trust accounts (settlements, taxes, payouts, closing)
        SALES_AGENT: Records buyer payments and reads trust accounts
    """
    ADMIN = "ADMIN"
    ACCOUNTANT = "ACCOUNTANT"
    SALES_AGENT = "SALES_AGENT"
