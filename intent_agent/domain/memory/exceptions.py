"""Exception Definitions"""


class ConversationMemoryError(Exception):
    """Base class for conversation memory errors"""
    pass


class MemoryStorageError(ConversationMemoryError):
    """Error occurred while storing or retrieving session data"""

    def __init__(self, message: str, session_id: str = ""):
        super().__init__(message)
        self.session_id = session_id
