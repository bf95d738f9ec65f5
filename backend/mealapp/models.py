from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, ForeignKey, Text, func, JSON
Base = declarative_base()

JOB_TYPE_ANALYZE_MEAL = "analyze_meal"

JOB_STATUS_QUEUED = "queued"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_DONE = "done"
JOB_STATUS_ERROR = "error"
JOB_STATUS_FAILED = "failed"

ANALYSIS_STATUS_DONE = "done"
ANALYSIS_STATUS_ERROR = "error"


class Job(Base):
    __tablename__ = "jobs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    job_type = Column(String, nullable=False, default=JOB_TYPE_ANALYZE_MEAL, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String, nullable=False, default=JOB_STATUS_QUEUED, index=True)
    run_at = Column(DateTime(timezone=True), nullable=True)
    # set when a processor claims the job; stale claims are put back in the queue
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Meal(Base):
    __tablename__ = "meals"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=True, index=True)
    meal_slot = Column(String, nullable=True)
    taken_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MealImage(Base):
    __tablename__ = "meal_images"
    id = Column(Integer, primary_key=True, autoincrement=True)
    meal_id = Column(Integer, ForeignKey("meals.id", ondelete="CASCADE"), nullable=False, index=True)
    storage_path = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MealImageAnalysis(Base):
    """One row per image; `raw_response` keeps the fixed-order record as JSON."""
    __tablename__ = "meal_image_analysis"
    image_id = Column(Integer, primary_key=True, autoincrement=False)
    meal_id = Column(Integer, nullable=True, index=True)
    status = Column(String, nullable=False)
    model = Column(String, nullable=True)
    prompt_version = Column(String, nullable=True)
    ran_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    raw_response = Column(JSON, nullable=False, default=dict)

    start_time = Column(String, nullable=True)
    carbs_g = Column(Float, nullable=False, default=0.0)
    fat_g = Column(Float, nullable=False, default=0.0)
    protein_g = Column(Float, nullable=False, default=0.0)
    fiber_g = Column(Float, nullable=False, default=0.0)
    GI = Column(Integer, nullable=False, default=0)
    alcohol_ml = Column(Integer, nullable=False, default=0)
    image_blur_flag = Column(Integer, nullable=False, default=0)
    category_count = Column(Integer, nullable=False, default=0)
    category_overflow_flag = Column(Integer, nullable=False, default=0)
    cat1 = Column(String, nullable=False, default="")
    cat2 = Column(String, nullable=False, default="")
    cat3 = Column(String, nullable=False, default="")
    cat4 = Column(String, nullable=False, default="")
    cat5 = Column(String, nullable=False, default="")


class Profile(Base):
    __tablename__ = "profiles"
    user_id = Column(String, primary_key=True)
    role = Column(String, nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
