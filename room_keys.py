ROLE_ROOM = "role:{role}" # role name - every connection of that role
USER_ROOM = "user:{user_id}" # identity id - every device of one user
ADMIN_ROOM = "admin" # receives user:connected / user:disconnected
STAFF_ROOM = "all_staff"

IMPLICIT_PREFIXES = ("role:", "user:")

# **Implicit rooms**
# - `role:{role}` and `user:{id}` are never listed in the registry.
# - They are derived from the identity on admit and cannot be joined or left by clients.
