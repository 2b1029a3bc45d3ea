# User-facing strings for analytics widgets
class Strings:
    # Connection states
    CONNECTING = "Connecting to live updates..."
    CONNECTED = "Live"
    RECONNECTING = "Connection lost. Reconnecting..."

    # Errors
    CONNECTION_FAILED = "Live updates are unavailable. Please reconnect."
    STORE_UNAVAILABLE = "Survey data could not be loaded. Try again later."
    SURVEY_NOT_FOUND = "Survey not found."
    TRY_AGAIN_LATER = "Something went wrong. Try again later."
