"""Vertex AI Gemini helpers for complaint triage.

Three operations, each with a deterministic fallback so that AI
availability never blocks a student or staff member:

* :meth:`TriageService.categorize` -- category, priority and department
  for a new complaint.  Falls back to :func:`keyword_fallback`.
* :meth:`TriageService.suggest_replies` -- three closing replies for
  staff.  Falls back to :data:`FALLBACK_SUGGESTIONS`.
* :meth:`TriageService.assist` -- the pre-submission help chatbot.
  Falls back to :data:`ASSIST_FALLBACK`.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import structlog
import vertexai
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from vertexai.generative_models import Content, GenerationConfig, GenerativeModel, Part

from config.departments import DEPARTMENTS, UNASSIGNED, department_for_category
from src.models.enums import PRIORITY_LEVELS, Category, Priority

if TYPE_CHECKING:
    from src.models.complaint import TriageTurn

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Prompts and fallbacks
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT: Final[str] = """\
You are the triage assistant of a university campus complaint desk. \
Students report problems with hostels, the mess, the campus network, \
academics, buildings and the library. Be concise, polite and practical.\
"""

_CATEGORIZE_PROMPT: Final[str] = """\
Analyze the following student complaint and return ONLY a JSON object with \
the keys "category", "priority" and "assignedDept".

Categories: "Hostel", "Mess", "Network", "Academic", "Infrastructure", "Other".
Priority: "Low", "Medium", "High".
Departments: {departments}.
Assign the department from the category, e.g. a "Network" complaint goes to \
"IT Department".

Complaint: "{text}"

JSON response:\
"""

_SUGGEST_PROMPT: Final[str] = """\
A student's complaint about "{description}" has been resolved. Write 3 \
polite, professional and distinct closing replies for a staff member. \
Return ONLY a JSON array of three strings.

JSON response:\
"""

_ASSIST_PROMPT: Final[str] = """\
Help the student solve their problem before they file a formal complaint.
Conversation so far:
{history}
Student: "{message}"

Give a short, step-by-step answer. If you cannot solve it, ask the student \
to submit a formal complaint.\
"""

HIGH_PRIORITY_KEYWORDS: Final[tuple[str, ...]] = ("urgent", "fire", "leak", "security", "emergency")
MEDIUM_PRIORITY_KEYWORDS: Final[tuple[str, ...]] = ("slow", "broken", "not working", "unavailable")

FALLBACK_SUGGESTIONS: Final[tuple[str, ...]] = (
    "The issue has been resolved.",
    "Your complaint has been addressed and the ticket is now closed. Thank you.",
    "We have resolved the issue you reported. Please let us know if you have any other concerns.",
)

ASSIST_FALLBACK: Final[str] = (
    "I'm having trouble connecting to my AI services right now. "
    "You can proceed to file the complaint directly."
)


@dataclass(frozen=True, slots=True)
class TriageResult:
    category: Category
    priority: Priority
    priority_level: int
    assigned_dept: str
    source: str = "ai"


def keyword_fallback(text: str) -> TriageResult:
    """Deterministic triage used whenever the model cannot answer."""
    lowered = text.lower()
    if any(kw in lowered for kw in HIGH_PRIORITY_KEYWORDS):
        priority = Priority.HIGH
    elif any(kw in lowered for kw in MEDIUM_PRIORITY_KEYWORDS):
        priority = Priority.MEDIUM
    else:
        priority = Priority.LOW
    return TriageResult(
        category=Category.OTHER,
        priority=priority,
        priority_level=PRIORITY_LEVELS[priority],
        assigned_dept=UNASSIGNED,
        source="fallback",
    )


def _strip_fences(raw: str) -> str:
    return raw.replace("```json", "").replace("```", "").strip()


def _parse_triage(raw: str) -> TriageResult:
    """Validate the model's JSON, normalising anything out of range."""
    parsed = json.loads(_strip_fences(raw))
    if not isinstance(parsed, dict):
        raise ValueError("expected a JSON object")

    try:
        category = Category(parsed.get("category") or Category.OTHER)
    except ValueError:
        category = Category.OTHER
    try:
        priority = Priority(parsed.get("priority") or Priority.LOW)
    except ValueError:
        priority = Priority.LOW

    department = parsed.get("assignedDept") or ""
    if department not in DEPARTMENTS:
        department = department_for_category(category)

    return TriageResult(
        category=category,
        priority=priority,
        priority_level=PRIORITY_LEVELS[priority],
        assigned_dept=department,
    )


# ---------------------------------------------------------------------------
# TriageService
# ---------------------------------------------------------------------------


class TriageService:
    """Async Gemini client for complaint triage.

    With no ``project_id`` the SDK is never initialised and every call
    returns its fallback.
    """

    def __init__(
        self,
        project_id: str,
        region: str = "asia-south1",
        model_name: str = "gemini-2.5-flash",
    ) -> None:
        self._project_id = project_id
        self._region = region
        self._model_name = model_name
        self._model: GenerativeModel | None = None

    @property
    def enabled(self) -> bool:
        return bool(self._project_id)

    def _get_model(self) -> GenerativeModel:
        if self._model is None:
            vertexai.init(project=self._project_id, location=self._region)
            self._model = GenerativeModel(
                model_name=self._model_name,
                system_instruction=[Part.from_text(_SYSTEM_PROMPT)],
            )
            logger.info("triage.model_initialized", project=self._project_id, model=self._model_name)
        return self._model

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _generate_text(self, prompt: str, *, json_output: bool, max_tokens: int = 512) -> str:
        config: dict[str, Any] = {"temperature": 0.2, "max_output_tokens": max_tokens}
        if json_output:
            config["response_mime_type"] = "application/json"
        response = await self._get_model().generate_content_async(
            contents=[Content(role="user", parts=[Part.from_text(prompt)])],
            generation_config=GenerationConfig(**config),
        )
        text = (response.text or "").strip()
        if not text:
            raise ValueError("empty model response")
        return text

    # -- public API ---------------------------------------------------------

    async def categorize(self, text: str) -> TriageResult:
        """Never raises; returns :func:`keyword_fallback` on any failure."""
        if not self.enabled:
            return keyword_fallback(text)

        start = time.perf_counter()
        prompt = _CATEGORIZE_PROMPT.format(
            departments=", ".join(f'"{name}"' for name in [*DEPARTMENTS, UNASSIGNED]),
            text=text,
        )
        try:
            result = _parse_triage(await self._generate_text(prompt, json_output=True, max_tokens=128))
        except Exception:
            logger.warning("triage.categorize_failed", text_length=len(text), exc_info=True)
            return keyword_fallback(text)

        logger.info(
            "triage.categorized",
            category=result.category.value,
            priority=result.priority.value,
            department=result.assigned_dept,
            processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return result

    async def suggest_replies(self, description: str) -> list[str]:
        if not self.enabled:
            return list(FALLBACK_SUGGESTIONS)
        try:
            raw = await self._generate_text(_SUGGEST_PROMPT.format(description=description), json_output=True)
            parsed = json.loads(_strip_fences(raw))
            suggestions = [s.strip() for s in parsed if isinstance(s, str) and s.strip()]
        except Exception:
            logger.warning("triage.suggest_failed", exc_info=True)
            return list(FALLBACK_SUGGESTIONS)
        return suggestions[:3] or list(FALLBACK_SUGGESTIONS)

    async def assist(self, message: str, history: list[TriageTurn] | None = None) -> str:
        if not self.enabled:
            return ASSIST_FALLBACK
        transcript = "\n".join(f"{turn.role}: {turn.text}" for turn in history or [])
        try:
            return await self._generate_text(
                _ASSIST_PROMPT.format(history=transcript, message=message),
                json_output=False,
                max_tokens=1024,
            )
        except Exception:
            logger.warning("triage.assist_failed", exc_info=True)
            return ASSIST_FALLBACK
