from app.models.audit_log import AuditLog  # noqa: F401
from app.models.class_subject_assignment import ClassSubjectAssignment  # noqa: F401
from app.models.school import SchoolClass, Subject  # noqa: F401
from app.models.substitution import Substitution, SubstitutionStatus  # noqa: F401
from app.models.teacher import Teacher, TeacherStatus  # noqa: F401
from app.models.teacher_attendance import AttendanceStatus, TeacherAttendance  # noqa: F401
from app.models.teacher_replacement import TeacherReplacement  # noqa: F401
from app.models.timetable_change import ChangeType, TimetableChange  # noqa: F401
from app.models.timetable_entry import TimetableEntry, Weekday  # noqa: F401
from app.models.timetable_structure import TimetableStructure  # noqa: F401
from app.models.weekly_timetable import WeeklyTimetable  # noqa: F401
