"""
Exam Errors - Error taxonomy for exam sessions and proctoring
"""


class ExamError(Exception):
    """Base class for all exam errors"""
    pass


class SessionCreateError(ExamError):
    """Session store rejected session creation; exam stays NotStarted"""
    pass


class QuestionLoadError(ExamError):
    """Question source could not supply questions"""
    pass


class PersistenceError(ExamError):
    """Session store failed to record an update"""
    pass


class InvalidTransition(ExamError):
    """Operation is not allowed in the current exam state"""

    def __init__(self, operation: str, state):
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while exam is {getattr(state, 'value', state)}")


class DeviceUnavailable(ExamError):
    """Camera or microphone permission denied or hardware absent"""
    pass


class ModelUnavailable(ExamError):
    """Face detection model could not be loaded"""
    pass
