# ------------------------------------------
# SQLAlchemy User model definition
# Represents school members known to the quiz engine
# - Users are issued by the identity service; only id, school and role matter here
# - ClassEnrollment links students to the classes they sit quizzes for
# - TeachingAssignment links teachers to the (class, subject) pairs they teach
# ------------------------------------------

from sqlalchemy import Column, String, TIMESTAMP, ForeignKey, Enum, Integer, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
from quiz_engine.db.database import Base

class UserRole(str, enum.Enum):
    student = "student"
    teacher = "teacher"
    class_teacher = "class_teacher"
    school_admin = "school_admin"

TEACHING_ROLES = (UserRole.teacher, UserRole.class_teacher)

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.student)
    school_id = Column(String, nullable=False, index=True)
    created_at = Column(TIMESTAMP, default=lambda: datetime.now(timezone.utc))

    enrollments = relationship("ClassEnrollment", back_populates="student", cascade="all, delete-orphan")
    teaching_assignments = relationship("TeachingAssignment", back_populates="teacher", cascade="all, delete-orphan")

    def is_enrolled_in(self, class_id: str) -> bool:
        return any(enrollment.class_id == class_id for enrollment in self.enrollments)

    def teaches(self, class_id: str, subject_id: str) -> bool:
        return any(
            assignment.class_id == class_id and assignment.subject_id == subject_id
            for assignment in self.teaching_assignments
        )

class ClassEnrollment(Base):
    __tablename__ = "class_enrollments"
    __table_args__ = (UniqueConstraint("student_id", "class_id", name="uq_enrollment_student_class"),)

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    student_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(String, nullable=False, index=True)

    student = relationship("User", back_populates="enrollments")

class TeachingAssignment(Base):
    __tablename__ = "teaching_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    teacher_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(String, nullable=False, index=True)
    subject_id = Column(String, nullable=False)

    teacher = relationship("User", back_populates="teaching_assignments")
