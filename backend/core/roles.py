"""User roles recognised by the marketplace."""

from enum import Enum


class Role(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    LOGISTICS = "logistics"
    COLDSTORAGE = "coldstorage"
    DRIVER = "driver"
    INSURANCE = "insurance"
    ADMIN = "admin"


# Roles a user may pick at self-registration. Admins are provisioned by other admins.
SELF_SERVICE_ROLES = frozenset(role for role in Role if role is not Role.ADMIN)
