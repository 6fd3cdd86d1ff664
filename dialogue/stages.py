"""
Dialogue stages for the scripted receptionist flow.

GREETING -> GET_NAME -> GET_PHONE -> GET_REASON -> FOLLOW_UP -> END
"""

from enum import Enum

DATA_STAGES = {"greeting", "get_name", "get_phone", "get_reason"}


class Stage(str, Enum):
    GREETING = "greeting"
    GET_NAME = "get_name"
    GET_PHONE = "get_phone"
    GET_REASON = "get_reason"
    FOLLOW_UP = "follow_up"
    END = "end"

    @property
    def is_terminal(self) -> bool:
        return self is Stage.END

    @property
    def collects_data(self) -> bool:
        """True while the script is still gathering name/phone/reason."""
        return self.value in DATA_STAGES
