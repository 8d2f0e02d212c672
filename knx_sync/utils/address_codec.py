"""Group address rendering and datapoint type normalization.

KNX group addresses are 16-bit values. ETS shows them in one of three styles:

- Free: the raw decimal value, e.g. ``"6544"``
- TwoLevel: ``"main/sub"`` with 5 bits main and 11 bits sub, e.g. ``"3/400"``
- ThreeLevel: ``"main/middle/sub"`` with 5/3/8 bits, e.g. ``"1/2/3"``

Project files name datapoint types ``"DPT-5"`` or ``"DPST-1-1"``, the bus
library expects ``"5"`` or ``"1.001"``.
"""

import math
import re
from datetime import datetime
from typing import Any, Optional, Tuple

STYLE_FREE = 'Free'
STYLE_TWO_LEVEL = 'TwoLevel'
STYLE_THREE_LEVEL = 'ThreeLevel'
GA_STYLES = (STYLE_FREE, STYLE_TWO_LEVEL, STYLE_THREE_LEVEL)

UNNAMED_SEGMENT = 'unnamed'

RE_TYPE_CODE = re.compile(r'^(\d+)(?:\.(\d+))?$')
RE_DPT = re.compile(r'^DPT-(\d+)$')
RE_DPST = re.compile(r'^DPST-(\d+)-(\d+)$')

RE_WHITESPACE = re.compile(r'\s+')
RE_UNSAFE = re.compile(r'[^A-Za-z0-9_\-]')
RE_REPEATED_SEP = re.compile(r'_+')

TRUE_TOKENS = ('1', 'true', 'on', 'yes')
FALSE_TOKENS = ('0', 'false', 'off', 'no')


def encode_address(value: Any, style: Optional[str]) -> str:
    """Render a group address number in the given style.

    Args:
        value: Group address as integer. Values outside 0..65535 are masked
               to 16 bits.
        style: One of ``GA_STYLES``. Unknown styles render ThreeLevel.

    Returns:
        Rendered address. Non-integer input is returned as ``str(value)``.

    Example:
        >>> encode_address(6544, 'TwoLevel')
        '3/400'
        >>> encode_address(2563, 'ThreeLevel')
        '1/2/3'
    """
    if isinstance(value, bool) or not isinstance(value, int):
        return str(value)

    safe = value & 0xFFFF

    if style == STYLE_FREE:
        return str(safe)

    if style == STYLE_TWO_LEVEL:
        main = (safe >> 11) & 0x1F
        sub = safe & 0x7FF
        return f"{main}/{sub}"

    main = (safe >> 11) & 0x1F
    middle = (safe >> 8) & 0x07
    sub = safe & 0xFF
    return f"{main}/{middle}/{sub}"


def decode_address(text: str, style: Optional[str]) -> int:
    """Parse an address rendered with ``encode_address`` back into its number.

    Raises:
        ValueError: If the text does not match the style's layout or a part
                    is out of range.
    """
    parts = str(text).strip().split('/')

    if style == STYLE_FREE:
        expected = 1
    elif style == STYLE_TWO_LEVEL:
        expected = 2
    else:
        expected = 3
    if len(parts) != expected:
        raise ValueError(f"Group address '{text}' is not in {style or STYLE_THREE_LEVEL} format")

    try:
        numbers = [int(p) for p in parts]
    except ValueError as exc:
        raise ValueError(f"Group address '{text}' contains a non-numeric part") from exc

    if expected == 1:
        limits = (0xFFFF,)
    elif expected == 2:
        limits = (0x1F, 0x7FF)
    else:
        limits = (0x1F, 0x07, 0xFF)
    for number, limit in zip(numbers, limits):
        if number < 0 or number > limit:
            raise ValueError(f"Group address '{text}' is out of range")

    if expected == 1:
        return numbers[0]
    if expected == 2:
        return (numbers[0] << 11) | numbers[1]
    return (numbers[0] << 11) | (numbers[1] << 8) | numbers[2]


def parse_address(text: str) -> int:
    """Parse a rendered group address, detecting its style from the separators."""
    separators = str(text).count('/')
    style = {0: STYLE_FREE, 1: STYLE_TWO_LEVEL}.get(separators, STYLE_THREE_LEVEL)
    return decode_address(text, style)


def normalize_type_id(project_type_id: Optional[str]) -> Optional[str]:
    """Normalize an ETS datapoint type id to the bus library's type code.

    Example:
        >>> normalize_type_id('DPST-1-1')
        '1.001'
        >>> normalize_type_id('DPT-5')
        '5'
        >>> normalize_type_id('not-a-dpt') is None
        True
    """
    if not project_type_id or not isinstance(project_type_id, str):
        return None

    s = project_type_id.strip()
    if not s:
        return None

    if RE_TYPE_CODE.match(s):
        return s

    m = RE_DPT.match(s)
    if m:
        return str(int(m.group(1)))

    m = RE_DPST.match(s)
    if m:
        major = int(m.group(1))
        minor = int(m.group(2))
        return f"{major}.{minor:03d}"

    return None


def major_of(type_code: Optional[str]) -> Optional[int]:
    """Return the major number of a type code, or None if it has none."""
    if not type_code or not isinstance(type_code, str):
        return None
    m = RE_TYPE_CODE.match(type_code.strip())
    if not m:
        return None
    return int(m.group(1))


def sanitize_id_segment(name: Any) -> str:
    """Turn a name into a token usable as one segment of an object id.

    The result only contains ``A-Z a-z 0-9 _ -`` and is never empty.

    Example:
        >>> sanitize_id_segment('  Living room / Light ')
        'Living_room_Light'
        >>> sanitize_id_segment('???')
        'unnamed'
    """
    if not isinstance(name, str):
        return UNNAMED_SEGMENT
    s = RE_WHITESPACE.sub('_', name.strip())
    s = RE_UNSAFE.sub('_', s)
    s = RE_REPEATED_SEP.sub('_', s)
    s = s.strip('_')
    return s or UNNAMED_SEGMENT


def address_segment(rendered_address: str) -> str:
    """Id segment for a rendered address: ``"1/2/3"`` becomes ``"1_2_3"``."""
    return sanitize_id_segment(str(rendered_address).replace('/', '_'))


def infer_common(type_code: Optional[str]) -> Tuple[str, str]:
    """Store value type and role for a type code.

    Date types are stored as ISO strings since the store has no date type.
    """
    major = major_of(type_code)
    if major == 1:
        return 'boolean', 'switch'
    if major == 16:
        return 'string', 'text'
    if major == 19:
        return 'string', 'date'
    return 'number', 'value'


def coerce_to_bus_value(value: Any, type_code: Optional[str]) -> Any:
    """Convert a store value into something the datapoint can write.

    Args:
        value: Value from the object store.
        type_code: Type code of the target group address.

    Returns:
        bool for major 1, str for major 16, datetime for major 19 and a
        number for everything else.
    """
    major = major_of(type_code)

    if major == 1:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            token = value.strip().lower()
            if token in TRUE_TOKENS:
                return True
            if token in FALSE_TOKENS:
                return False
        return bool(value)

    if major == 16:
        if value is None:
            return ''
        return str(value)

    if major == 19:
        if isinstance(value, datetime):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            # epoch milliseconds, as written by the store's timestamp fields
            try:
                return datetime.fromtimestamp(value / 1000)
            except (OverflowError, OSError, ValueError):
                return datetime.now()
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
            except ValueError:
                pass
        return datetime.now()

    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return 0
        if not math.isfinite(number):
            return 0
        return number
    return 0
