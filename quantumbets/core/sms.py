"""
SMS channel sender.
Sends picks over the Twilio Messages REST API using httpx.
"""

import re
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

import httpx

from quantumbets.core.config import settings
from quantumbets.core.channels import SendResult
from quantumbets.core.exceptions import SendFailure

logger = logging.getLogger(__name__)

QUIET_HOURS_MESSAGE = "SMS not sent during quiet hours (9PM-9AM local time)"


def mask_phone(phone: str) -> str:
    """Mask phone number for logging: +15551234567 -> +155****4567"""
    if len(phone) <= 4:
        return "****"
    return phone[:4] + "****" + phone[-4:]


def validate_us_phone_number(phone_number: Optional[str]) -> bool:
    """Check for 10 digits, or 11 digits with a leading country code 1."""
    if not phone_number:
        return False
    digits = re.sub(r'\D', '', phone_number)
    return len(digits) == 10 or (len(digits) == 11 and digits[0] == '1')


def format_phone_number(phone_number: str) -> str:
    """Format a US phone number to E.164; unrecognized input is returned as-is."""
    if not phone_number:
        return ''
    digits = re.sub(r'\D', '', phone_number)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits[0] == '1':
        return f"+{digits}"
    return phone_number


def is_quiet_hours(now: Optional[datetime] = None) -> bool:
    """True between SMS_QUIET_HOURS_START and SMS_QUIET_HOURS_END, local server time."""
    hour = (now or datetime.now()).hour
    start, end = settings.SMS_QUIET_HOURS_START, settings.SMS_QUIET_HOURS_END
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end


def format_pick_for_sms(pick: Dict[str, Any]) -> str:
    """Condense one pick into a single SMS line."""
    if not pick:
        return ''

    message = f"{pick.get('sport')} PICK: {pick.get('team')} {pick.get('bet')} ({pick.get('odds')})"

    if pick.get('units'):
        message += f" {pick['units']}u"

    analysis = pick.get('analysis')
    if analysis:
        brief = f"{analysis[:47]}..." if len(analysis) > 50 else analysis
        message += f" - {brief}"

    return message


def format_picks_for_sms(picks: List[Dict[str, Any]]) -> str:
    """Format up to three picks as an SMS body."""
    if not picks:
        return 'No picks available today.'

    lines = [f"{index}. {format_pick_for_sms(pick)}" for index, pick in enumerate(picks[:3], start=1)]
    joined = '\n\n'.join(lines)
    return f"QUANTUM PICKS:\n\n{joined}\n\nFor more details, check your email. Reply STOP to unsubscribe."


async def send_sms(
    phone_number: str,
    body: str,
    status_callback_url: Optional[str] = None
) -> SendResult:
    """
    Send an SMS through Twilio.

    Args:
        phone_number: Destination number (normalized to E.164)
        body: Message body
        status_callback_url: URL Twilio posts delivery receipts to (optional)

    Returns:
        SendResult with the Twilio message SID on success

    Raises:
        SendFailure: If the provider cannot be reached
    """
    if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN or not settings.TWILIO_PHONE_NUMBER:
        logger.error("Twilio settings not configured. Cannot send SMS.")
        return SendResult.failed("SMS provider not configured")

    to = format_phone_number(phone_number)
    masked = mask_phone(to)
    data = {
        "To": to,
        "From": settings.TWILIO_PHONE_NUMBER,
        "Body": body,
    }
    if status_callback_url:
        data["StatusCallback"] = status_callback_url

    url = f"{settings.TWILIO_API_BASE}/Accounts/{settings.TWILIO_ACCOUNT_SID}/Messages.json"

    try:
        async with httpx.AsyncClient(timeout=settings.SMS_TIMEOUT_SECONDS) as client:
            response = await client.post(
                url,
                data=data,
                auth=(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
            )
            response.raise_for_status()
            payload = response.json()
    except httpx.HTTPStatusError as e:
        error = _provider_error_message(e.response)
        logger.error(f"SMS send rejected for {masked}: {error}")
        return SendResult.failed(error)
    except httpx.TransportError as e:
        logger.error(f"SMS provider unreachable for {masked}: {e}")
        raise SendFailure(f"SMS provider unreachable: {e.__class__.__name__}", channel="sms") from e

    logger.info(f"SMS sent to {masked}: sid={payload.get('sid')}")
    return SendResult.ok(message_id=payload.get("sid"))


def _provider_error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message") or f"HTTP {response.status_code}"
    except ValueError:
        return f"HTTP {response.status_code}"


async def send_picks_sms(
    phone_number: Optional[str],
    body: str,
    status_callback_url: Optional[str] = None
) -> SendResult:
    """Send a picks SMS, honoring quiet hours."""
    if not phone_number:
        return SendResult.failed("Phone number is required")

    if not validate_us_phone_number(phone_number):
        return SendResult.failed(f"Invalid phone number format: {mask_phone(phone_number)}")

    if is_quiet_hours():
        logger.info(f"Skipping SMS to {mask_phone(phone_number)}: quiet hours")
        return SendResult.failed(QUIET_HOURS_MESSAGE)

    return await send_sms(phone_number, body, status_callback_url=status_callback_url)
