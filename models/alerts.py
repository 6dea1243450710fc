from enum import Enum
from typing import List, Optional, Any
from pydantic import BaseModel, Field, field_validator
import pytz


class CategoryType(str, Enum):
    Sports = "Sports"
    News = "News"
    Movies = "Movies"
    YouTube = "YouTube"
    Custom_Input = "Custom_Input"


class FrequencyType(str, Enum):
    realtime = "realtime"
    hourly = "hourly"
    daily = "daily"
    weekly = "weekly"


class ScheduleSettings(BaseModel):
    """Informational only: the scheduler polls every active alert on one global interval."""
    frequency: FrequencyType = Field(default=FrequencyType.realtime, description="How often to send notifications")
    time: Optional[str] = Field(default="09:00", description="Time for daily/weekly alerts (HH:MM format)")
    days: Optional[List[str]] = Field(default=None, description="Days for weekly alerts: ['monday', 'friday']")
    timezone: Optional[str] = Field(default="Asia/Kolkata", description="User timezone")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value):
        if value is None:
            return value
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("time")
    @classmethod
    def validate_time(cls, value):
        if value is None:
            return value
        try:
            hour, minute = map(int, value.split(":"))
        except ValueError:
            raise ValueError("time must be HH:MM")
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError("time must be HH:MM")
        return value


class FollowupQuestion(BaseModel):
    question: str = ""
    selected_answer: str = ""
    options: List[str] = Field(default_factory=list)


def normalize_followups(raw: Any) -> List[dict]:
    """Coerce follow-up input into {question, selected_answer, options} dicts.

    Accepts plain strings, legacy objects carrying ``answers`` instead of
    ``options``, and pydantic models.
    """
    if raw is None:
        return []
    if isinstance(raw, (str, dict, FollowupQuestion)):
        raw = [raw]
    normalized = []
    for fq in raw:
        if isinstance(fq, FollowupQuestion):
            normalized.append(fq.model_dump())
        elif isinstance(fq, dict):
            options = fq.get("options")
            if fq.get("answers") and isinstance(fq.get("answers"), list):
                options = fq["answers"]
            normalized.append({
                "question": str(fq.get("question") or ""),
                "selected_answer": str(fq.get("selected_answer") or ""),
                "options": [str(o) for o in (options or []) if o is not None],
            })
        elif isinstance(fq, str) and fq.strip():
            normalized.append({"question": fq.strip(), "selected_answer": "", "options": []})
    return normalized


class AlertBase(BaseModel):
    main_category: CategoryType = Field(..., description="Fixed main category enum")
    sub_categories: Optional[List[str]] = Field(
        default=None, description="Frontend selected sub-categories"
    )
    followup_questions: Optional[List[FollowupQuestion]] = Field(
        default=None, description="Follow-up questions with the selected answer and all options"
    )
    custom_question: Optional[str] = Field(
        default=None, description="Custom question text from frontend"
    )

    @field_validator("followup_questions", mode="before")
    @classmethod
    def coerce_followups(cls, value):
        if value is None:
            return None
        return normalize_followups(value)


class AlertCreate(AlertBase):
    user_id: str = Field(..., description="User ID from users collection")


class AlertResponse(AlertBase):
    alert_id: str
    user_id: str
    is_active: bool

    class Config:
        use_enum_values = True
        populate_by_name = True
