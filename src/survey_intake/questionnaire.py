"""QuestionnaireStore: loads questionnaire YAML into typed models.

Each ``*.yaml`` file under the questionnaire directory holds one
questionnaire::

    id: contact-form-v1
    kind: form
    active: true
    questions:
      - id: full_name
        text: {en: "Your name", de: "Ihr Name"}
        answer_type: short_text
        required: true
        display_order: 1

At most one questionnaire per kind may be active; that is the one new
sessions are bound to.  Inactive questionnaires stay loaded so sessions
created against them can still be submitted.

Usage::

    store = QuestionnaireStore()     # defaults to questionnaires/ at repo root
    store.load()
    q = store.active(SessionKind.FORM)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from survey_db.models.enums import SessionKind
from survey_intake.constants import (
    DEFAULT_LOCALE,
    DEFAULT_RATING_MAX,
    DEFAULT_RATING_MIN,
    SUPPORTED_LOCALES,
)
from survey_intake.errors import InternalError
from survey_intake.models.question import (
    AnswerType,
    LocalizedQuestion,
    Questionnaire,
)

logger = logging.getLogger(__name__)


def find_repo_root(start: Optional[Path] = None) -> Path:
    """Walk upwards from *start* to the directory holding pyproject.toml or .git."""
    p = (start or Path(__file__).resolve()).parent
    for parent in [p, *p.parents]:
        if (parent / "pyproject.toml").exists() or (parent / ".git").exists():
            return parent
    return Path.cwd()


def load_yaml(path: Path | str) -> Any:
    if isinstance(path, str):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing YAML file: {path}")
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def resolve_locale(locale: str | None) -> str:
    """Map a requested locale onto a supported one (``"de-AT"`` -> ``"de"``)."""
    if not locale:
        return DEFAULT_LOCALE
    base = locale.strip().lower().replace("_", "-").split("-")[0]
    return base if base in SUPPORTED_LOCALES else DEFAULT_LOCALE


class QuestionnaireStore:
    """Holds every questionnaire found under ``questionnaire_dir``."""

    def __init__(self, questionnaire_dir: str | Path | None = None) -> None:
        if questionnaire_dir is None:
            questionnaire_dir = find_repo_root() / "questionnaires"
        self._base = Path(questionnaire_dir)
        self._by_id: dict[str, Questionnaire] = {}
        self._active: dict[SessionKind, str] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Parse all questionnaire files.  Call once at startup.

        Raises ``FileNotFoundError`` if the directory is missing and
        ``ValueError`` for duplicate ids or two active questionnaires of the
        same kind.
        """
        if not self._base.is_dir():
            raise FileNotFoundError(f"Missing questionnaire directory: {self._base}")
        for path in sorted(self._base.glob("*.yaml")):
            self.add(Questionnaire.model_validate(load_yaml(path)))
        logger.info(
            "QuestionnaireStore loaded: %d questionnaires (%s active)",
            len(self._by_id),
            ", ".join(f"{k.value}={v}" for k, v in self._active.items()) or "none",
        )

    def add(self, questionnaire: Questionnaire) -> None:
        """Register one questionnaire (also used by tests)."""
        if questionnaire.id in self._by_id:
            raise ValueError(f"Duplicate questionnaire id: {questionnaire.id}")
        questionnaire = _with_rating_defaults(questionnaire)
        if questionnaire.active:
            current = self._active.get(questionnaire.kind)
            if current is not None:
                raise ValueError(
                    f"Two active {questionnaire.kind.value} questionnaires: "
                    f"{current}, {questionnaire.id}"
                )
            self._active[questionnaire.kind] = questionnaire.id
        self._by_id[questionnaire.id] = questionnaire

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, questionnaire_id: str) -> Questionnaire:
        """Questionnaire a session was created against.

        A session pointing at an unknown questionnaire is a deployment
        inconsistency, reported as :class:`InternalError`.
        """
        try:
            return self._by_id[questionnaire_id]
        except KeyError:
            logger.error("Unknown questionnaire referenced: %s", questionnaire_id)
            raise InternalError() from None

    def active(self, kind: SessionKind) -> Questionnaire:
        qid = self._active.get(kind)
        if qid is None:
            logger.error("No active %s questionnaire loaded", kind.value)
            raise InternalError()
        return self._by_id[qid]

    def localized(self, questionnaire: Questionnaire, locale: str | None) -> list[LocalizedQuestion]:
        """Questions in display order, rendered in ``locale``."""
        loc = resolve_locale(locale)
        return [LocalizedQuestion.from_question(q, loc) for q in questionnaire.ordered()]

    def __len__(self) -> int:
        return len(self._by_id)


def _with_rating_defaults(questionnaire: Questionnaire) -> Questionnaire:
    questions = []
    changed = False
    for q in questionnaire.questions:
        if q.answer_type == AnswerType.RATING and (q.min_value is None or q.max_value is None):
            q = q.model_copy(update={
                "min_value": DEFAULT_RATING_MIN if q.min_value is None else q.min_value,
                "max_value": DEFAULT_RATING_MAX if q.max_value is None else q.max_value,
            })
            changed = True
        questions.append(q)
    if not changed:
        return questionnaire
    return questionnaire.model_copy(update={"questions": questions})
