"""
Utility functions for the SMS inbox.
"""

import logging
from typing import Mapping

from twilio.request_validator import RequestValidator

logger = logging.getLogger(__name__)


def verify_twilio_signature(url: str, params: Mapping[str, object], signature: str, auth_token: str) -> bool:
    """
    Verify an X-Twilio-Signature header.

    Args:
        url: Full URL the provider posted to (with or without the default port)
        params: POST parameters of the request
        signature: Value of the X-Twilio-Signature header
        auth_token: TWILIO_AUTH_TOKEN

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Verifying Twilio signature for {url}, {len(params)} params")

    # The validator concatenates names and values, so JSON scalars are signed in text form
    signed_params = {key: value if isinstance(value, str) else str(value) for key, value in params.items()}

    is_valid = RequestValidator(auth_token).validate(url, signed_params, signature)
    logger.info(f"Twilio signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid
