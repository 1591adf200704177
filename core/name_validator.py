import re

from config.settings import NODE_NAME_MAX_LENGTH, NODE_NAME_MIN_LENGTH
from core.errors import InvalidName

# letters, digits and inner hyphens; usable as a guest hostname
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?$")


def validate(
    name: str,
    min_length: int = NODE_NAME_MIN_LENGTH,
    max_length: int = NODE_NAME_MAX_LENGTH,
) -> None:
    """
    Reject node names the guest cannot use as its computer name.

    Raises InvalidName before anything is sent to vSphere.
    """
    if name is None:
        raise InvalidName("Node name is required")

    if not min_length <= len(name) <= max_length:
        raise InvalidName(
            f"Node name '{name}' must be between {min_length} and "
            f"{max_length} characters long (got {len(name)})"
        )

    if not _NAME_PATTERN.match(name):
        raise InvalidName(
            f"Node name '{name}' may only contain letters, digits and "
            f"hyphens, and may not start or end with a hyphen"
        )
