DEFAULT_MAX_LOOP_ITERATIONS = 1000
DEFAULT_SCHEDULE_TIME = "09:00"
DEFAULT_WEEKLY_DAY = 1  # Monday, with Sunday = 0
DEFAULT_MONTHLY_DAY = 1
DEFAULT_EVENTS_TOPIC = "workflow-events"
MAX_TEMPLATE_DEPTH = 10
SIGNATURE_HEADERS = ("x-webhook-signature", "x-signature")
