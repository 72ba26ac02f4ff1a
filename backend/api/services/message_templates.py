"""SMS and email bodies for customer notifications."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time

BRAND = "Glowpoint"
FEEDBACK_URL = "https://glowpoint.org"
LOCATION = "NSCI Building, Km. 37 Pulong Buhangin, Santa Maria, Bulacan"
CONTACT_NUMBER = "09300784517"

SMS_TYPES = ("confirmation", "reminder", "now_serving")
EMAIL_TYPES = ("confirmation", "reminder", "cancellation", "reschedule", "now_serving")


@dataclass
class NotificationPayload:
    """Plain-text view of an appointment or queue entry, ready for templating.

    Contact fields are already decrypted at this point.
    """

    name: str
    email: str = ""
    phone: str = ""
    position: int | None = None
    date: date | None = None
    time: time | None = None
    services: list[str] = field(default_factory=list)
    total: float = 0.0


@dataclass
class EmailContent:
    subject: str
    html: str
    text: str


def _short_date(value: date | None) -> str:
    # Jan 5, 2025
    return f"{value:%b} {value.day}, {value.year}" if value else ""


def _long_date(value: date | None) -> str:
    # Sunday, January 5, 2025
    return f"{value:%A, %B} {value.day}, {value.year}" if value else ""


def _clock(value: time | None) -> str:
    # 2:05 PM
    if value is None:
        return ""
    hour = value.hour % 12 or 12
    return f"{hour}:{value.minute:02d} {'AM' if value.hour < 12 else 'PM'}"


def _services(payload: NotificationPayload) -> str:
    return ", ".join(payload.services) if payload.services else "Not specified"


def _peso(amount: float) -> str:
    return f"{max(0.0, amount or 0.0):.2f}"


def sms_message(sms_type: str, payload: NotificationPayload) -> str:
    """Render an SMS body. Unknown types render as an empty string."""
    if sms_type == "confirmation":
        return (
            f"{BRAND}: Hello {payload.name}! Your appointment on {_short_date(payload.date)} "
            f"at {_clock(payload.time)} is confirmed! Remaining balance: P{_peso(payload.total)}. "
            "Please arrive on time. We look forward to seeing you!"
        )
    if sms_type == "reminder":
        return (
            f"{BRAND} Reminder: Your appointment is in 2 hours at {_clock(payload.time)}. "
            f"Please be on time. See you soon! Don't forget to check {FEEDBACK_URL} "
            "to leave your feedback after the appointment!"
        )
    if sms_type == "now_serving":
        return (
            f"{BRAND}: Hi! It's your turn soon! Your queue number is {payload.position}. "
            "Please proceed to the counter in 5-10 minutes."
        )
    return ""


def _card(title: str, body: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; '
        'background-color: #fffbeb; padding: 20px; border-radius: 10px;">'
        f'<h1 style="color: #d97706; text-align: center;">{title}</h1>'
        '<div style="background-color: white; padding: 25px; border-radius: 8px; '
        f'border: 2px solid #fbbf24;">{body}</div></div>'
    )


def email_content(email_type: str, payload: NotificationPayload) -> EmailContent:
    """Render subject, HTML and text bodies.

    Raises:
        ValueError: unknown email type (a caller bug, not a delivery failure).
    """
    name = payload.name
    if email_type == "confirmation":
        details = (
            f"Name: {name}\nDate: {_long_date(payload.date)}\nTime: {_clock(payload.time)}\n"
            f"Services: {_services(payload)}\nTotal: ₱{_peso(payload.total)}"
        )
        return EmailContent(
            subject="Your Appointment is Confirmed!",
            html=_card(
                "Appointment Confirmed!",
                details.replace("\n", "<br>")
                + f"<p><strong>Location:</strong> {LOCATION}<br>"
                f"<strong>Contact:</strong> {CONTACT_NUMBER}</p>",
            ),
            text=(
                f"Your Beauty Appointment is Confirmed!\n\n{details}\n\n"
                f"Location: {LOCATION}\nContact: {CONTACT_NUMBER}\n\n"
                "Please arrive early as to not void the appointment!"
            ),
        )
    if email_type == "reminder":
        details = (
            f"Today at: {_clock(payload.time)}\nServices: {_services(payload)}\n"
            f"Balance to pay: ₱{_peso(payload.total)}"
        )
        return EmailContent(
            subject="Reminder: Your beauty appointment is in 2 hours!",
            html=_card(
                "Appointment Reminder",
                details.replace("\n", "<br>")
                + "<p>Please arrive on time! After 15 minutes of being late, "
                "the appointment may be considered void.</p>",
            ),
            text=(
                f"Appointment Reminder - Your beauty session is in 2 hours!\n\n{details}\n\n"
                f"Location: {LOCATION}\nContact: {CONTACT_NUMBER}\n\n"
                "Please arrive on time! After 15 minutes of being late, "
                "the appointment may be considered void."
            ),
        )
    if email_type == "cancellation":
        when = f"{_long_date(payload.date)} at {_clock(payload.time)}"
        return EmailContent(
            subject="Appointment Cancelled",
            html=_card(
                "Appointment Cancelled",
                f"<p>Hi {name},</p><p>Your appointment scheduled for <strong>{when}</strong> "
                "has been cancelled.</p><p>If you did not request this cancellation, "
                "please contact us.</p>",
            ),
            text=(
                f"Hi {name},\n\nYour appointment scheduled for {when} has been cancelled."
                "\n\nWe hope to see you again soon!"
            ),
        )
    if email_type == "reschedule":
        when = f"{_long_date(payload.date)} at {_clock(payload.time)}"
        return EmailContent(
            subject="Appointment Rescheduled",
            html=_card(
                "Appointment Rescheduled",
                f"<p>Hi {name},</p><p>Your appointment has been rescheduled to "
                f"<strong>{when}</strong>.</p><p>We look forward to seeing you!</p>",
            ),
            text=(
                f"Hi {name},\n\nYour appointment has been rescheduled to {when}."
                "\n\nWe look forward to seeing you!"
            ),
        )
    if email_type == "now_serving":
        return EmailContent(
            subject=f"It's Your Turn at {BRAND}!",
            html=_card(
                "It's Your Turn!",
                f'<p style="font-size: 18px;">Hi {name}, your queue number is now being called!</p>'
                f'<p style="font-size: 48px; font-weight: bold; color: #d97706;">'
                f"#{payload.position}</p>"
                '<p style="font-size: 18px;">Please proceed to the counter.</p>',
            ),
            text=(
                f"Hi {name}, it's your turn! Your queue number is #{payload.position}. "
                "Please proceed to the counter."
            ),
        )
    raise ValueError(f"Unknown email type: {email_type}")
