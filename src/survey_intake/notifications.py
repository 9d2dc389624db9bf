"""Post-submission side effects: admin and customer e-mail, newsletter sign-up, cache snapshot.

:class:`SubmissionEffects` turns a completed submission into
:class:`~survey_intake.dispatcher.SideEffect` jobs.  Jobs that write to the
database open their own session from the factory and commit it themselves;
they never share the request transaction, which is already committed when
they run.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
import uuid
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import Any

import jinja2
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from survey_db.models.enums import SessionKind
from survey_db.repository import SessionCacheRepository
from survey_intake.dispatcher import SideEffect
from survey_intake.interfaces import Mailer
from survey_intake.models.answer import ValidatedAnswer
from survey_intake.models.question import (
    CHOICE_TYPES,
    FALLBACK_LOCALE,
    AnswerType,
    Questionnaire,
    pick_locale,
)
from survey_intake.newsletter import NewsletterService

logger = logging.getLogger(__name__)

SUBMISSION_CACHE_KEY = "submission"


# ------------------------------------------------------------------
# SMTP
# ------------------------------------------------------------------

class SmtpMailer(Mailer):
    """Blocking ``smtplib`` delivery run in a worker thread.

    Port 465 uses implicit TLS; any other port upgrades with STARTTLS when
    ``starttls`` is set.
    """

    def __init__(
        self,
        host: str,
        from_addr: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        starttls: bool = True,
        timeout: float = 15.0,
    ) -> None:
        self._host = host
        self._port = port
        self._from = from_addr
        self._username = username
        self._password = password
        self._starttls = starttls
        self._timeout = timeout

    async def send(
        self,
        *,
        to: str,
        subject: str,
        text_body: str,
        html_body: str | None = None,
    ) -> None:
        msg = EmailMessage()
        msg["From"] = self._from
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text_body)
        if html_body:
            msg.add_alternative(html_body, subtype="html")
        await asyncio.to_thread(self._deliver, msg)
        logger.info("Mail sent via %s:%d to %s", self._host, self._port, to)

    def _deliver(self, msg: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self._port == 465:
            with smtplib.SMTP_SSL(self._host, self._port, context=context,
                                  timeout=self._timeout) as server:
                self._login(server)
                server.send_message(msg)
            return
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            server.ehlo()
            if self._starttls:
                server.starttls(context=context)
                server.ehlo()
            self._login(server)
            server.send_message(msg)

    def _login(self, server: smtplib.SMTP) -> None:
        if self._username and self._password:
            server.login(self._username, self._password)


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------

@dataclass(frozen=True)
class RenderedMail:
    subject: str
    text_body: str
    html_body: str


class NotificationRenderer:
    """Jinja2 renderer for the admin notification and the customer receipt.

    Args:
        template_dir: optional override; defaults to ``templates/`` next to
            this module
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        if template_dir is None:
            template_dir = Path(__file__).parent / "templates"
        loader = jinja2.FileSystemLoader(str(template_dir))
        self._text_env = jinja2.Environment(
            loader=loader, trim_blocks=True, lstrip_blocks=True, autoescape=False,
        )
        self._html_env = jinja2.Environment(
            loader=loader, trim_blocks=True, lstrip_blocks=True, autoescape=True,
        )

    def admin_notification(
        self,
        *,
        questionnaire: Questionnaire,
        session_id: uuid.UUID,
        kind: SessionKind,
        locale: str,
        completed_at: datetime,
        answers: list[ValidatedAnswer],
        email: str | None = None,
        newsletter_optin: bool = False,
    ) -> RenderedMail:
        ctx = {
            "kind": kind.value,
            "session_id": str(session_id),
            "questionnaire_id": questionnaire.id,
            "locale": locale,
            "completed_at": completed_at.isoformat(),
            "email": email,
            "newsletter_optin": newsletter_optin,
            "items": [_display_item(questionnaire, a) for a in answers],
        }
        return RenderedMail(
            subject=f"New {kind.value} submission ({questionnaire.id})",
            text_body=self._text_env.get_template("admin_notification.txt.jinja2").render(**ctx),
            html_body=self._html_env.get_template("admin_notification.html.jinja2").render(**ctx),
        )

    def customer_confirmation(
        self,
        *,
        questionnaire: Questionnaire,
        session_id: uuid.UUID,
        kind: SessionKind,
        locale: str,
        completed_at: datetime,
        answers: list[ValidatedAnswer],
    ) -> RenderedMail:
        """Receipt for the person who filled in the form, in their locale."""
        strings = _CUSTOMER_STRINGS.get(locale) or _CUSTOMER_STRINGS[FALLBACK_LOCALE]
        t = strings[kind]
        ctx = {
            "t": t,
            "locale": locale,
            "session_id": str(session_id),
            "completed_at": completed_at.isoformat(),
            "items": [_display_item(questionnaire, a, locale) for a in answers],
        }
        return RenderedMail(
            subject=t["subject"],
            text_body=self._text_env.get_template("customer_confirmation.txt.jinja2").render(**ctx),
            html_body=self._html_env.get_template("customer_confirmation.html.jinja2").render(**ctx),
        )


_CUSTOMER_STRINGS: dict[str, dict[SessionKind, dict[str, str]]] = {
    "en": {
        SessionKind.FORM: {
            "subject": "We have received your enquiry",
            "greeting": "Hello,",
            "body": "thank you for getting in touch. We will reply within two working days.",
            "reference": "Reference",
            "completed": "Received at",
            "closing": "Best regards",
        },
        SessionKind.SURVEY: {
            "subject": "Thank you for your feedback",
            "greeting": "Hello,",
            "body": "thank you for completing our survey. Your feedback helps us improve.",
            "reference": "Reference",
            "completed": "Received at",
            "closing": "Best regards",
        },
    },
    "cs": {
        SessionKind.FORM: {
            "subject": "Vaši poptávku jsme přijali",
            "greeting": "Dobrý den,",
            "body": "děkujeme, že jste nás kontaktovali. Odpovíme do dvou pracovních dnů.",
            "reference": "Číslo",
            "completed": "Přijato",
            "closing": "S pozdravem",
        },
        SessionKind.SURVEY: {
            "subject": "Děkujeme za vaši zpětnou vazbu",
            "greeting": "Dobrý den,",
            "body": "děkujeme za vyplnění dotazníku. Vaše zpětná vazba nám pomáhá zlepšovat se.",
            "reference": "Číslo",
            "completed": "Přijato",
            "closing": "S pozdravem",
        },
    },
    "de": {
        SessionKind.FORM: {
            "subject": "Wir haben Ihre Anfrage erhalten",
            "greeting": "Hallo,",
            "body": "vielen Dank für Ihre Nachricht. Wir antworten innerhalb von zwei Werktagen.",
            "reference": "Referenz",
            "completed": "Eingegangen am",
            "closing": "Mit freundlichen Grüßen",
        },
        SessionKind.SURVEY: {
            "subject": "Vielen Dank für Ihr Feedback",
            "greeting": "Hallo,",
            "body": "vielen Dank für die Teilnahme an unserer Umfrage. Ihr Feedback hilft uns weiter.",
            "reference": "Referenz",
            "completed": "Eingegangen am",
            "closing": "Mit freundlichen Grüßen",
        },
    },
}


def _display_item(
    questionnaire: Questionnaire, answer: ValidatedAnswer, locale: str = FALLBACK_LOCALE,
) -> dict[str, Any]:
    question = questionnaire.get(answer.question_id)
    label = pick_locale(question.text, locale) if question else answer.question_id
    item: dict[str, Any] = {"question": label, "urls": None}
    if answer.answer_type == AnswerType.IMAGE:
        item["urls"] = list(answer.value)
        item["answer"] = ", ".join(answer.value)
        return item
    if question is not None and answer.answer_type in CHOICE_TYPES:
        texts = {o.value: pick_locale(o.option_text, locale) for o in question.options}
        values = answer.value if isinstance(answer.value, list) else [answer.value]
        item["answer"] = ", ".join(texts.get(v) or v for v in values)
        return item
    item["answer"] = str(answer.value)
    return item


# ------------------------------------------------------------------
# Side-effect factory
# ------------------------------------------------------------------

class SubmissionEffects:
    """Builds the jobs that follow a completed submission.

    Args:
        session_factory: opens a fresh ``AsyncSession`` per DB job; jobs
            needing the database are skipped when it is ``None``
        mailer: outbound mail; both notifications are skipped without it
        admin_email: recipient of the admin notification

    The customer receipt goes to the submitted ``email`` and is only built
    when one was given.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        mailer: Mailer | None = None,
        admin_email: str | None = None,
        renderer: NotificationRenderer | None = None,
        newsletter: NewsletterService | None = None,
        cache_repo: SessionCacheRepository | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._mailer = mailer
        self._admin_email = admin_email
        self._renderer = renderer or NotificationRenderer()
        self._newsletter = newsletter or NewsletterService()
        self._cache_repo = cache_repo or SessionCacheRepository()

    def for_submission(
        self,
        *,
        questionnaire: Questionnaire,
        session_id: uuid.UUID,
        kind: SessionKind,
        locale: str,
        completed_at: datetime,
        answers: list[ValidatedAnswer],
        email: str | None = None,
        newsletter_optin: bool = False,
    ) -> list[SideEffect]:
        effects: list[SideEffect] = []

        if self._mailer is not None and self._admin_email:
            mail = self._renderer.admin_notification(
                questionnaire=questionnaire,
                session_id=session_id,
                kind=kind,
                locale=locale,
                completed_at=completed_at,
                answers=answers,
                email=email,
                newsletter_optin=newsletter_optin,
            )
            effects.append(SideEffect(
                name=f"admin-notification:{session_id}",
                run=lambda: self._mailer.send(
                    to=self._admin_email,
                    subject=mail.subject,
                    text_body=mail.text_body,
                    html_body=mail.html_body,
                ),
            ))

        if self._mailer is not None and email:
            receipt = self._renderer.customer_confirmation(
                questionnaire=questionnaire,
                session_id=session_id,
                kind=kind,
                locale=locale,
                completed_at=completed_at,
                answers=answers,
            )
            effects.append(SideEffect(
                name=f"customer-confirmation:{session_id}",
                run=lambda: self._mailer.send(
                    to=email,
                    subject=receipt.subject,
                    text_body=receipt.text_body,
                    html_body=receipt.html_body,
                ),
            ))

        if self._session_factory is None:
            return effects

        if email and newsletter_optin:
            async def subscribe() -> None:
                async with self._session_factory() as db:
                    await self._newsletter.subscribe(
                        db, email=email, locale=locale, source=kind.value,
                    )
                    await db.commit()

            effects.append(SideEffect(name=f"newsletter:{session_id}", run=subscribe))

        snapshot = {
            "questionnaire_id": questionnaire.id,
            "kind": kind.value,
            "completed_at": completed_at.isoformat(),
            "answers": {a.question_id: a.value for a in answers},
        }

        async def cache_snapshot() -> None:
            async with self._session_factory() as db:
                await self._cache_repo.upsert(
                    db,
                    session_id=session_id,
                    cache_key=SUBMISSION_CACHE_KEY,
                    cache_data=snapshot,
                )
                await db.commit()

        effects.append(SideEffect(name=f"session-cache:{session_id}", run=cache_snapshot))
        return effects
