# command_center/settings.py
import os

from dotenv import load_dotenv

load_dotenv()

# --- Configuration ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")

COMMAND_CENTER_MODEL = os.getenv("COMMAND_CENTER_MODEL", "gemini-2.5-flash")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_RETRIES = int(os.getenv("LLM_RETRIES", "3"))

# Draft lifecycle
DRAFT_EXPIRATION_HOURS = int(os.getenv("DRAFT_EXPIRATION_HOURS", "24"))
SESSION_IDLE_HOURS = int(os.getenv("SESSION_IDLE_HOURS", str(DRAFT_EXPIRATION_HOURS)))

HIGH_CONFIDENCE_THRESHOLD = float(os.getenv("HIGH_CONFIDENCE_THRESHOLD", "0.8"))
MEDIUM_CONFIDENCE_THRESHOLD = float(os.getenv("MEDIUM_CONFIDENCE_THRESHOLD", "0.5"))

# hard cap on questions per clarification session, always within 3..5
CLARIFICATION_MAX_QUESTIONS = min(5, max(3, int(os.getenv("CLARIFICATION_MAX_QUESTIONS", "5"))))

# Queue receivers (see command_center/entities.py QueueMessage)
QUEUE_SENDER_ID = os.getenv("QUEUE_SENDER_ID", "command_center")
ENTITY_SERVICES_RECEIVER_ID = os.getenv("ENTITY_SERVICES_RECEIVER_ID", "")
NOTIFICATION_RECEIVER_ID = os.getenv("NOTIFICATION_RECEIVER_ID", "")
