import re
from typing import List

_NON_DIGITS = re.compile(r'\D')

def digits_only(phone: str) -> str:
    return _NON_DIGITS.sub('', phone or '')

def phone_candidates(phone: str) -> List[str]:
    """All stored forms a sender number may have been saved under, in lookup order"""
    raw = (phone or '').strip()
    digits = digits_only(raw)
    candidates = [raw, digits]

    if len(digits) == 10:
        candidates += ['1' + digits, '+1' + digits]
    elif len(digits) == 11 and digits.startswith('1'):
        candidates += ['+' + digits, digits[1:]]
    elif digits:
        candidates.append('+' + digits)

    seen = set()
    result = []
    for candidate in candidates:
        if candidate and candidate not in seen:
            seen.add(candidate)
            result.append(candidate)
    return result

def rate_limit_identifier(phone: str) -> str:
    """Normalize to the 11 digit North American form so formatting variants share a bucket"""
    digits = digits_only(phone)
    if len(digits) == 10:
        return '1' + digits
    return digits or (phone or '').strip()

def mask_phone(phone: str) -> str:
    if not phone or len(phone) < 4:
        return phone
    return '*' * (len(phone) - 4) + phone[-4:]
