# Highest first
ROLE_PRIORITY = ("ADMIN", "OFFICER")


def role_names(roles):
    names = []
    for role in roles or []:
        name = role if isinstance(role, str) else getattr(role, "name", None)
        if name in ROLE_PRIORITY:
            names.append(name)
    return names


def primary_role(roles):
    names = set(role_names(roles))
    for name in ROLE_PRIORITY:
        if name in names:
            return name
    return None
