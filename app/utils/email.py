"""
Email Utility for Clubhouse Gym
Class booking notifications sent over SMTP
"""
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from app.config import (
    SMTP_HOST,
    SMTP_PORT,
    SMTP_USER,
    SMTP_PASSWORD,
    SMTP_FROM_EMAIL,
    SMTP_FROM_NAME,
    EMAIL_ENABLED,
    APP_NAME,
)

logger = logging.getLogger(__name__)

BASE_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; background-color: #f9f9f9; border-radius: 10px; }
    .header { background-color: #1f7a5c; color: white; padding: 20px; text-align: center; border-radius: 10px 10px 0 0; }
    .content { background-color: white; padding: 30px; border-radius: 0 0 10px 10px; }
    .session-box { background-color: #eef7f3; border: 1px solid #1f7a5c; padding: 15px; border-radius: 5px; margin: 20px 0; }
    .footer { text-align: center; margin-top: 20px; font-size: 12px; color: #666; }
"""


def send_email(to_email: str, subject: str, body: str) -> bool:
    """
    Send email using SMTP server (supports TLS and SSL)

    Args:
        to_email: Recipient email address
        subject: Email subject
        body: Email body (HTML supported)

    Returns:
        bool: True if email sent successfully, False otherwise
    """
    if not EMAIL_ENABLED:
        logger.info(f"Email disabled, skipped '{subject}' to {to_email}")
        return False

    try:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{SMTP_FROM_NAME} <{SMTP_FROM_EMAIL}>"
        message["To"] = to_email
        message.attach(MIMEText(body, "html"))

        # 465 = implicit SSL, anything else = STARTTLS
        if SMTP_PORT == 465:
            with smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT) as server:
                server.login(SMTP_USER, SMTP_PASSWORD)
                server.send_message(message)
        else:
            with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
                server.starttls()
                server.login(SMTP_USER, SMTP_PASSWORD)
                server.send_message(message)

        logger.info(f"Email sent successfully to {to_email}")
        return True

    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP Authentication failed: {str(e)}")
        return False
    except smtplib.SMTPException as e:
        logger.error(f"SMTP Error: {str(e)}")
        return False
    except Exception as e:
        logger.error(f"Failed to send email: {type(e).__name__}: {str(e)}")
        return False


def _render(title: str, greeting_name: str, paragraphs: list, session_lines: list) -> str:
    body_html = "".join(f"<p>{p}</p>" for p in paragraphs)
    session_html = "".join(f"<p>{line}</p>" for line in session_lines)
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>{BASE_STYLE}</style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1>{title}</h1>
            </div>
            <div class="content">
                <p>Hello <strong>{greeting_name}</strong>,</p>
                {body_html}
                <div class="session-box">{session_html}</div>
                <p>See you soon,<br><strong>{APP_NAME}</strong></p>
                <div class="footer">
                    <p>You receive this email because you booked a class with us.</p>
                </div>
            </div>
        </div>
    </body>
    </html>
    """


def _session_lines(class_name: str, session_date: str, start_time: str) -> list:
    return [
        f"<strong>Class:</strong> {class_name}",
        f"<strong>Date:</strong> {session_date}",
        f"<strong>Time:</strong> {start_time}",
    ]


def send_booking_confirmation(to_email: str, member_name: str, class_name: str,
                              session_date: str, start_time: str, waitlist_position: int = None) -> bool:
    """Booking confirmed, or placed on the waitlist when waitlist_position is set."""
    if waitlist_position:
        subject = f"You're on the waitlist for {class_name}"
        paragraphs = [
            "The class is full, so we added you to the waitlist.",
            f"Your position: <strong>#{waitlist_position}</strong>. We will email you if a spot opens up.",
        ]
        title = "Waitlisted"
    else:
        subject = f"Booking confirmed: {class_name}"
        paragraphs = ["Your spot is booked."]
        title = "Booking Confirmed"

    body = _render(title, member_name, paragraphs, _session_lines(class_name, session_date, start_time))
    return send_email(to_email, subject, body)


def send_waitlist_promotion(to_email: str, member_name: str, class_name: str,
                            session_date: str, start_time: str) -> bool:
    subject = f"A spot opened up: {class_name}"
    paragraphs = [
        "Good news! A spot opened up and your waitlisted booking is now confirmed.",
        "If you can no longer attend, please cancel before the cancellation deadline.",
    ]
    body = _render("You're In!", member_name, paragraphs, _session_lines(class_name, session_date, start_time))
    return send_email(to_email, subject, body)


def send_session_cancelled(to_email: str, member_name: str, class_name: str,
                           session_date: str, start_time: str, reason: str = None) -> bool:
    subject = f"Class cancelled: {class_name}"
    paragraphs = ["Unfortunately this class has been cancelled by the club."]
    if reason:
        paragraphs.append(f"Reason: {reason}")
    paragraphs.append("Any class credit used for this booking has been returned to you.")
    body = _render("Class Cancelled", member_name, paragraphs, _session_lines(class_name, session_date, start_time))
    return send_email(to_email, subject, body)


def send_booking_cancelled(to_email: str, member_name: str, class_name: str, session_date: str,
                           start_time: str, is_late: bool = False, late_fee=None) -> bool:
    subject = f"Booking cancelled: {class_name}"
    paragraphs = ["Your booking has been cancelled."]
    if is_late:
        paragraphs.append("It was cancelled after the cancellation deadline, so the class credit is not returned.")
        if late_fee:
            paragraphs.append(f"A late cancellation fee of <strong>{late_fee}</strong> applies.")
    else:
        paragraphs.append("Any class credit used for this booking has been returned to you.")
    body = _render("Booking Cancelled", member_name, paragraphs, _session_lines(class_name, session_date, start_time))
    return send_email(to_email, subject, body)
