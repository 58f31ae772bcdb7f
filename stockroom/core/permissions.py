from stockroom.models.user import UserRole

ALL_PERMISSIONS: frozenset[str] = frozenset(
    {
        "users:read",
        "users:write",
        "users:delete",
        "products:read",
        "products:write",
        "products:delete",
        "inventory:read",
        "inventory:write",
        "expenses:read",
        "expenses:write",
        "audit:read",
        "settings:read",
        "settings:write",
    }
)

ROLE_PERMISSIONS: dict[UserRole, frozenset[str]] = {
    UserRole.ADMIN: ALL_PERMISSIONS,
    UserRole.MANAGER: frozenset(
        {
            "products:read",
            "products:write",
            "inventory:read",
            "inventory:write",
            "expenses:read",
            "expenses:write",
            "settings:read",
        }
    ),
    UserRole.EMPLOYEE: frozenset({"products:read", "inventory:read", "expenses:read"}),
}


def permissions_for(role: UserRole) -> frozenset[str]:
    return ROLE_PERMISSIONS.get(role, frozenset())


def has_permission(role: UserRole, permission: str) -> bool:
    return permission in permissions_for(role)
