FRIENDLY_MESSAGES = {
    "CircuitOpen": "The payment gateway is temporarily unavailable. Please try again shortly.",
    "ConnectError": "Unable to reach the payment gateway. Please try again later.",
    "ConnectionError": "Unable to connect to a required service. Please try again later.",
    "Timeout": "The request took too long. Please try again later.",
    "IntegrityError": "This record conflicts with one that already exists.",
    "DatabaseError": "Temporary issue while accessing data. Please try again shortly.",
    "ValueError": "Invalid data received. Please check your input and try again.",
    "KeyError": "Some required information is missing.",
}


def get_friendly_message(error: Exception) -> str:
    error_type = type(error).__name__.lower()
    for key, msg in FRIENDLY_MESSAGES.items():
        if key.lower() in error_type:
            return msg
    return "Something went wrong on our end. Please try again."
