"""
otpauth:// URI parsing and formatting.

Handles the de-facto Key URI format used by authenticator QR codes:

    otpauth://TYPE/LABEL?secret=...&issuer=...&algorithm=...&digits=...&period=...&counter=...

The parser is strict about the parts that make a credential unusable
(scheme, type, label, secret, HOTP counter) and lenient about everything
else: unknown algorithms and unknown keys are kept, malformed numeric
parameters are dropped with a warning.
"""
import logging
from typing import Optional, Union
from urllib.parse import urlsplit, unquote, quote, parse_qsl, urlencode

from errors import (
    InvalidScheme, InvalidType, EmptyLabel, EmptyAccount, MissingSecret, MissingCounter,
    LabelEncodingError
)
from models import (
    Algorithm, OtpCredential, OtpType, OtpUriData, OtpUriLabel, OtpUriParameters,
    DEFAULT_ALGORITHM, DEFAULT_DIGITS, DEFAULT_PERIOD, STANDARD_DIGITS
)

# Configure logging
logger = logging.getLogger(__name__)

SCHEME = "otpauth://"
KNOWN_ALGORITHMS = {a.value for a in Algorithm}
ENCODED_COLON = "%3a"


def _parse_int(key: str, value: str, minimum: int) -> Optional[int]:
    """Parse a numeric query parameter, returning None when it must be ignored."""
    try:
        number = int(value.strip())
    except ValueError:
        logger.warning("Ignoring non-numeric '%s' parameter", key)
        return None
    if number < minimum:
        logger.warning("Ignoring out-of-range '%s' parameter: %s", key, number)
        return None
    return number


def _split_label(decoded: str) -> OtpUriLabel:
    # A colon that was encoded twice survives the first decoding as %3A.
    if ':' not in decoded and ENCODED_COLON in decoded.lower():
        decoded = unquote(decoded)

    colon = decoded.find(':')
    if 0 < colon < len(decoded) - 1:
        issuer = decoded[:colon].strip() or None
        account = decoded[colon + 1:].strip()
    else:
        issuer = None
        account = decoded.strip()

    if not account:
        raise EmptyAccount("Account name part of the label is empty")
    return OtpUriLabel(issuer=issuer, account=account)


def parse_otpauth_uri(uri: str) -> OtpUriData:
    """
    Parse an otpauth:// URI.

    Args:
        uri: Raw URI, e.g. the payload of a scanned QR code

    Returns:
        OtpUriData with the label and the recognised parameters

    Raises:
        ParseError: One of its subclasses, naming the first problem found
    """
    if not isinstance(uri, str) or uri[:len(SCHEME)].lower() != SCHEME:
        raise InvalidScheme("URI does not start with otpauth://")

    parts = urlsplit(uri.strip())

    otp_type = parts.netloc.lower()
    if otp_type not in ('totp', 'hotp'):
        raise InvalidType(f"Unknown OTP type {parts.netloc!r}, expected 'totp' or 'hotp'")

    encoded_label = parts.path[1:] if parts.path.startswith('/') else parts.path
    decoded_label = unquote(encoded_label)
    if not decoded_label.strip():
        raise EmptyLabel("Label cannot be empty")

    label = _split_label(decoded_label)

    secret = None
    issuer = None
    algorithm = None
    digits = None
    period = None
    counter = None
    extra = {}

    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        key = key.lower()
        if key == 'secret':
            secret = value.strip()
        elif key == 'issuer':
            issuer = value.strip() or None
        elif key == 'algorithm':
            algorithm = value.strip().upper()
            if algorithm not in KNOWN_ALGORITHMS:
                logger.warning("Unknown algorithm %r, keeping it as provided", algorithm)
        elif key == 'digits':
            digits = _parse_int(key, value, 1)
            if digits is not None and digits not in STANDARD_DIGITS:
                logger.warning("Unusual number of digits: %s", digits)
        elif key == 'period':
            period = _parse_int(key, value, 1)
        elif key == 'counter':
            counter = _parse_int(key, value, 0)
        else:
            logger.debug("Keeping unknown parameter %r", key)
            extra[key] = value

    if not secret:
        raise MissingSecret("Missing or empty 'secret' parameter")

    if otp_type == 'hotp' and counter is None:
        raise MissingCounter("HOTP URI requires a valid 'counter' parameter")

    # Query parameter wins; the label issuer is still reported on the label.
    if issuer is None and label.issuer:
        issuer = label.issuer

    return OtpUriData(
        type=OtpType(otp_type.upper()),
        label=label,
        parameters=OtpUriParameters(
            secret=secret,
            issuer=issuer,
            algorithm=algorithm,
            digits=digits,
            period=period,
            counter=counter,
            extra=extra,
        ),
    )


def format_otpauth_uri(credential: OtpCredential) -> str:
    """
    Build the otpauth:// URI for a credential (export / QR regeneration).

    Decorative prefix and postfix are not part of the URI.

    Raises:
        LabelEncodingError: If the issuer contains a colon, or there is no
            issuer and the account name contains one; parsers split the
            label on the first colon, so such labels cannot round-trip
    """
    if credential.issuer and ':' in credential.issuer:
        raise LabelEncodingError("Issuer must not contain ':'")
    if not credential.issuer and ':' in credential.account_name:
        raise LabelEncodingError("Account name must not contain ':' without an issuer")

    account = quote(credential.account_name, safe='@')
    if credential.issuer:
        label = f"{quote(credential.issuer, safe='@')}:{account}"
    else:
        label = account

    params = [('secret', credential.secret)]
    if credential.issuer:
        params.append(('issuer', credential.issuer))
    params.append(('algorithm', credential.algorithm))
    params.append(('digits', str(credential.digits)))
    if credential.type == OtpType.HOTP:
        params.append(('counter', str(credential.counter)))
    else:
        params.append(('period', str(credential.period)))

    query = urlencode(params, quote_via=quote)
    return f"{SCHEME}{credential.type.value.lower()}/{label}?{query}"


def credential_from_uri(uri: Union[str, OtpUriData], prefix: str = "",
                        postfix: str = "") -> OtpCredential:
    """
    Convert a URI (or an already parsed one) into a new credential.

    Args:
        uri: otpauth:// string or OtpUriData
        prefix: Text shown before the generated code
        postfix: Text shown after the generated code

    Returns:
        OtpCredential with defaults filled in for omitted parameters
    """
    data = parse_otpauth_uri(uri) if isinstance(uri, str) else uri
    params = data.parameters
    return OtpCredential(
        account_name=data.label.account,
        issuer=data.effective_issuer,
        secret=params.secret,
        type=data.type,
        algorithm=params.algorithm or DEFAULT_ALGORITHM,
        digits=params.digits or DEFAULT_DIGITS,
        period=params.period or DEFAULT_PERIOD,
        counter=params.counter or 0,
        prefix=prefix,
        postfix=postfix,
    )
