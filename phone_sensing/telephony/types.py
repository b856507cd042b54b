"""Raw provider codes to stable call and SMS categories."""

from __future__ import annotations

from phone_sensing.common.models import PhoneCallType, PhoneSmsType

# android.provider.CallLog.Calls
CALL_TYPES = {
    1: PhoneCallType.INCOMING,
    2: PhoneCallType.OUTGOING,
    3: PhoneCallType.MISSED,
    4: PhoneCallType.VOICEMAIL,
}

# android.provider.Telephony.Sms
SMS_TYPES = {
    0: PhoneSmsType.OTHER,  # all
    1: PhoneSmsType.INCOMING,  # inbox
    2: PhoneSmsType.OUTGOING,  # sent
    3: PhoneSmsType.OTHER,  # draft
    4: PhoneSmsType.OUTGOING,  # outbox
    5: PhoneSmsType.OTHER,  # failed
    6: PhoneSmsType.OTHER,  # queued
}


def _code(raw: object) -> int | None:
    if isinstance(raw, bool):
        return None
    try:
        return int(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def call_type(raw: object) -> PhoneCallType:
    return CALL_TYPES.get(_code(raw), PhoneCallType.UNKNOWN)


def sms_type(raw: object) -> PhoneSmsType:
    return SMS_TYPES.get(_code(raw), PhoneSmsType.UNKNOWN)
