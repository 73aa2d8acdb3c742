"""
Notification Service - Stage change email + in-app notifications via Pica API
"""
import os
import base64
import uuid
import httpx
import logging
from datetime import datetime, timezone
from dotenv import load_dotenv
from pathlib import Path

from backend.transition_errors import NotificationError
from backend.transition_models import DEFAULT_NOTIFICATION_TYPE

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

# Pica API Configuration
PICA_API_BASE = "https://api.picaos.com/v1/passthrough"

def get_pica_credentials():
    """Get Pica credentials from environment"""
    return {
        "secret_key": os.environ.get("PICA_SECRET_KEY"),
        "gmail_key": os.environ.get("PICA_GMAIL_CONNECTION_KEY"),
        "outlook_key": os.environ.get("PICA_OUTLOOK_MAIL_CONNECTION_KEY"),
    }

# Gmail Action ID from Pica docs
GMAIL_ACTION_ID = "conn_mod_def::F_JeJ_A_TKg::cc2kvVQQTiiIiLEDauy6zQ"
OUTLOOK_ACTION_ID = "conn_mod_def::GCwA84KBXNw::h9iYXKQMQY-nKxeNMrZwng"

# Pipeline stage id -> label shown to candidates
STAGE_LABELS = {
    "pending": "Application Review",
    "hr": "HR Screening",
    "written_test": "Written Test",
    "demo_slot": "Demo Slot Selection",
    "demo_schedule": "Demo Scheduled",
    "feedback_result": "Feedback & Results",
    "interaction": "Final Interaction",
    "bgv": "Background Verification",
    "confirmation": "Confirmation",
    "upload_documents": "Document Upload",
    "verify": "Verification",
    "approval": "Approval",
    "offer_letter": "Offer Letter",
    "onboarding": "Onboarding",
}


def get_stage_label(stage: str) -> str:
    return STAGE_LABELS.get(stage or "", stage)


def create_mime_message(to: str, subject: str, body: str) -> str:
    """Create a MIME email message and encode it in base64url"""
    mime_message = f"""To: {to}
Subject: {subject}
Content-Type: text/html; charset=UTF-8
MIME-Version: 1.0

{body}"""
    encoded = base64.urlsafe_b64encode(mime_message.encode('utf-8')).decode('utf-8')
    return encoded


async def send_email_gmail(to: str, subject: str, body: str) -> dict:
    """Send email via Gmail using Pica API"""
    creds = get_pica_credentials()

    if not creds["secret_key"] or not creds["gmail_key"]:
        logger.warning(f"Gmail credentials not configured. Secret: {bool(creds['secret_key'])}, Gmail: {bool(creds['gmail_key'])}")
        return {"success": False, "error": "Gmail credentials not configured"}

    try:
        raw = create_mime_message(to, subject, body)

        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(
                f"{PICA_API_BASE}/users/me/messages/send",
                headers={
                    "x-pica-secret": creds["secret_key"],
                    "x-pica-connection-key": creds["gmail_key"],
                    "x-pica-action-id": GMAIL_ACTION_ID,
                    "Content-Type": "application/json"
                },
                json={"raw": raw}
            )

            if response.status_code in [200, 201, 202]:
                logger.info(f"Email sent successfully to {to}")
                return {"success": True, "data": response.json()}
            else:
                logger.error(f"Failed to send email: {response.status_code} - {response.text}")
                return {"success": False, "error": response.text}

    except Exception as e:
        logger.error(f"Error sending email: {str(e)}")
        return {"success": False, "error": str(e)}


async def send_email_outlook(to: str, subject: str, body: str) -> dict:
    """Send email via Outlook using Pica API"""
    creds = get_pica_credentials()

    if not creds["secret_key"] or not creds["outlook_key"]:
        logger.warning("Outlook credentials not configured")
        return {"success": False, "error": "Outlook credentials not configured"}

    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(
                f"{PICA_API_BASE}/me/sendMail",
                headers={
                    "x-pica-secret": creds["secret_key"],
                    "x-pica-connection-key": creds["outlook_key"],
                    "x-pica-action-id": OUTLOOK_ACTION_ID,
                    "Content-Type": "application/json"
                },
                json={
                    "message": {
                        "subject": subject,
                        "body": {"contentType": "HTML", "content": body},
                        "toRecipients": [{"emailAddress": {"address": to}}]
                    }
                }
            )

            if response.status_code in [200, 201, 202]:
                logger.info(f"Outlook email sent successfully to {to}")
                return {"success": True}
            else:
                logger.error(f"Failed to send Outlook email: {response.status_code} - {response.text}")
                return {"success": False, "error": response.text}

    except Exception as e:
        logger.error(f"Error sending Outlook email: {str(e)}")
        return {"success": False, "error": str(e)}


async def send_email(to: str, subject: str, body: str) -> dict:
    """Send email using available provider (Gmail first, then Outlook)"""
    creds = get_pica_credentials()

    if creds["gmail_key"]:
        return await send_email_gmail(to, subject, body)
    elif creds["outlook_key"]:
        return await send_email_outlook(to, subject, body)
    else:
        logger.warning("No email provider configured")
        return {"success": False, "error": "No email provider configured"}


# ============ EMAIL TEMPLATES ============

def get_stage_change_email_template(
    candidate: dict,
    notification_type: str,
    old_stage: str,
    new_stage: str
) -> tuple:
    """Generate email subject and body for an automated stage move"""
    new_label = get_stage_label(new_stage)
    old_label = get_stage_label(old_stage)
    name = candidate.get("name") or "Candidate"

    if notification_type == DEFAULT_NOTIFICATION_TYPE:
        subject = f"Application Update: Moving to {new_label}"
    else:
        subject = f"Application Update: {new_label}"

    body = f"""
    <!DOCTYPE html>
    <html>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
            <p>Dear {name},</p>
            <p>Your application has progressed from <strong>{old_label}</strong>
            to <strong>{new_label}</strong>.</p>
            <p>We will be in touch with the next steps shortly.</p>
        </div>
    </body>
    </html>
    """

    return subject, body


# ============ DISPATCHER ============

class NotificationDispatcher:
    """Sends the candidate email and records an in-app notification"""

    def __init__(self, db, email_sender=send_email):
        self.db = db
        self.email_sender = email_sender

    async def dispatch(
        self,
        candidate_id: str,
        notification_type: str,
        old_stage: str,
        new_stage: str
    ) -> str:
        """Returns the notification id, raises NotificationError on failure"""
        candidate = await self.db.candidates.find_one(
            {"candidate_id": candidate_id},
            {"_id": 0, "name": 1, "email": 1, "job_id": 1}
        )
        if not candidate:
            raise NotificationError(f"Candidate not found: {candidate_id}")
        if not candidate.get("email"):
            raise NotificationError(f"Candidate {candidate_id} has no email address")

        subject, body = get_stage_change_email_template(
            candidate=candidate,
            notification_type=notification_type,
            old_stage=old_stage,
            new_stage=new_stage
        )

        result = await self.email_sender(candidate["email"], subject, body)
        if not result.get("success"):
            raise NotificationError(f"Email delivery failed: {result.get('error')}")

        notification_id = f"notif_{uuid.uuid4().hex[:12]}"
        notification_doc = {
            "notification_id": notification_id,
            "type": notification_type,
            "title": f"Candidate Stage Changed: {candidate.get('name', 'Unknown')}",
            "message": f"Stage changed from {get_stage_label(old_stage)} to {get_stage_label(new_stage)}",
            "entity_type": "candidate",
            "entity_id": candidate_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "created_by": "system",
            "for_roles": ["admin", "recruiter"],
            "read_by": []
        }
        await self.db.notifications.insert_one(notification_doc)

        logger.info(f"Stage change notification {notification_id} sent for candidate {candidate_id}")
        return notification_id
