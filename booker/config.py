import os
import re
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root (parent of booker/)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)

BOOKING_PROFILE = os.getenv("BOOKING_PROFILE", "profile.json")
OUTPUT_DIR = os.getenv("BOOKING_OUTPUT_DIR", "runs")
MAX_TIME_SECONDS = int(os.getenv("BOOKING_MAX_TIME_SECONDS", "600"))

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
MODEL_NAME = "gemini-3-flash-preview"
TWOCAPTCHA_URL = os.getenv("TWOCAPTCHA_URL", "https://2captcha.com")

BOOKING_PATH = "/booking"
VIEWPORT = {"width": 1280, "height": 900}

# Step timing (seconds)
WAIT_TIMEOUT = 15.0
POLL_INTERVAL = 0.1
SETTLE_SECONDS = 0.5
RETRY_BACKOFF = 1.0
AUTH_ATTEMPTS = 3
DATE_PICKER_ATTEMPTS = 3

# Challenge policy
CHALLENGE_ATTEMPTS = 4
ARTIFACT_TIMEOUT = 10.0
SUBMIT_TIMEOUT = 5.0
MAX_POLLS = 15
POLL_SECONDS = 1.0
INTERSTITIAL_TIMEOUT = 0.5
REJECTION_WINDOW = 3.0
CONFIRMATION_TIMEOUT = 5.0
CHALLENGE_LENGTH = 4

SELECTORS = {
    "language_menu": ".language-switch",
    "language_option": ".language-switch li, .language-switch a",
    "account_menu": ".member-menu",
    "account_links": ".member-menu a",
    "login_form": "form.login-form",
    "login_inputs": "form.login-form input",
    "login_submit": "form.login-form button[type='submit']",
    "popup_buttons": ".modal.show button, .swal2-popup button",
    "logged_in_marker": ".member-name",
    "trip_rows": ".route-list .route-item",
    "trip_origin": ".route-from",
    "trip_destination": ".route-to",
    "date_input": "input.date-picker",
    "calendar": ".calendar-popup",
    "calendar_header": ".calendar-popup .calendar-title",
    "calendar_next": ".calendar-popup .calendar-next",
    "calendar_days": ".calendar-popup td.day",
    "session_tabs": ".session-tabs .tab",
    "time_slots": ".time-slot-list .time-slot",
    "ticket_rows": ".ticket-counter",
    "ticket_label": ".ticket-name",
    "ticket_minus": "button.minus",
    "ticket_plus": "button.plus",
    "passenger_rows": ".passenger-row",
    "passenger_category": ".passenger-type",
    "passenger_name": "input.passenger-name",
    "passenger_id": "input.passenger-id",
    "terms_checkbox": "input.agree-terms",
    "captcha_image": "img.captcha-image",
    "captcha_refresh": ".captcha-refresh",
    "captcha_input": "input.captcha-input",
    "form_submit": "button.booking-submit",
    "interstitial_buttons": ".modal.show button",
    "toast": ".toast, .swal2-html-container",
    "confirmation_marker": ".payment-countdown",
}

TEXTS = {
    "language": "English",
    "login_link": "Login",
    "account_placeholder": "Account",
    "password_placeholder": "Password",
    "continue": "Continue",
    "sessions": {
        "morning": "Morning",
        "afternoon": "Afternoon",
        "evening": "Evening",
    },
    "standard": "Full Fare",
    "concession": "Concession",
    "rejections": (
        "Incorrect verification code",
        "Too many requests",
    ),
}

# Calendar header, e.g. "November 2026"
CALENDAR_HEADER_FORMAT = "%B %Y"

# Time-slot text, e.g. "08:30 Remaining seats: 12"
SEAT_PATTERN = re.compile(r"seats?\D*(\d+)", re.IGNORECASE)
SLOT_LABEL_PATTERN = re.compile(r"\b\d{1,2}:\d{2}\b")
