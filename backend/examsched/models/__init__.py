from examsched.models.academic import (  # noqa: F401
    Enrollment,
    ExamClass,
    LecturerAssignment,
    Program,
    School,
    Semester,
    Unit,
)
from examsched.models.activity_log import ActivityLog  # noqa: F401
from examsched.models.exam_period import ExamPeriod  # noqa: F401
from examsched.models.exam_timetable import ExamAssignment  # noqa: F401
from examsched.models.scheduling import (  # noqa: F401
    BatchKind,
    BatchStatus,
    FailureReason,
    FailureStatus,
    SchedulingBatch,
    SchedulingFailure,
    SessionSnapshot,
)
from examsched.models.venue import Venue  # noqa: F401
