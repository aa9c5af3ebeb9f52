from fairtest.models.local_identity import LocalIdentity
from fairtest.models.exam import Exam
from fairtest.models.submission import Submission
from fairtest.models.result import Result

__all__ = ["LocalIdentity", "Exam", "Submission", "Result"]
