from enum import Enum

# Stored as strings (native enums disabled for easier evolution).


class BlockKindEnum(str, Enum):
    PERMANENT = "permanent"
    TEMPORARY = "temporary"


class BlockMatchEnum(str, Enum):
    IP = "ip"
    KEY = "key"
