CHECKOUT_COMPLETED = "checkout.session.completed"

INVITE_STEP = "invite"
CRM_STEP = "crm"
UNLOCK_STEP = "unlock"

# metadata keys that may carry the content to unlock, in lookup order
CONTENT_ID_KEYS = ("course_id", "courseId", "course")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 1000
