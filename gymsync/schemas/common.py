from enum import Enum


class UserType(str, Enum):
    MEMBER = "member"
    TRAINER = "trainer"
    ORGANIZATION_ADMIN = "organization-admin"
    SUPER_ADMIN = "super-admin"


class MembershipRole(str, Enum):
    """Role an identity holds inside one gym."""

    MEMBER = "member"
    TRAINER = "trainer"
    ORGANIZATION_ADMIN = "organization-admin"


# Roles that may register without an administrator
SELF_SERVICE_USER_TYPES = (UserType.MEMBER, UserType.TRAINER)
